import asyncio

from voice_relay.vad import VADConfig, VoiceActivityMonitor


def make_monitor(**kwargs):
    return VoiceActivityMonitor(level_source=lambda: 0.0, on_silence=lambda: None, **kwargs)


class TestSilenceTracking:
    def setup_method(self):
        self.monitor = make_monitor()

    def test_loud_input_is_not_silence(self):
        result = self.monitor.tick(0.5, now=0.0)
        assert not result.is_silent
        assert not result.is_speech_end

    def test_silence_window_ends_utterance(self):
        assert not self.monitor.tick(0.05, now=0.0).is_speech_end
        assert not self.monitor.tick(0.05, now=1.0).is_speech_end
        result = self.monitor.tick(0.05, now=1.5)
        assert result.is_speech_end
        assert result.silence_elapsed == 1.5

    def test_speech_resets_silence_timer(self):
        self.monitor.tick(0.0, now=0.0)
        self.monitor.tick(0.0, now=1.4)
        self.monitor.tick(0.3, now=1.45)
        assert not self.monitor.tick(0.0, now=1.5).is_speech_end
        assert not self.monitor.tick(0.0, now=2.9).is_speech_end
        assert self.monitor.tick(0.0, now=3.0).is_speech_end

    def test_threshold_volume_counts_as_speech(self):
        self.monitor.tick(0.0, now=0.0)
        assert not self.monitor.tick(0.1, now=2.0).is_silent

    def test_speech_end_fires_once(self):
        self.monitor.tick(0.0, now=0.0)
        assert self.monitor.tick(0.0, now=2.0).is_speech_end
        assert not self.monitor.tick(0.0, now=3.0).is_speech_end

    def test_volume_is_clamped(self):
        assert self.monitor.tick(7.0, now=0.0).volume == 1.0
        assert self.monitor.tick(-1.0, now=0.1).volume == 0.0


FAST = VADConfig(volume_threshold=0.1, silence_duration=0.05, poll_interval=0.005)


def test_monitor_fires_callback_once_after_silence():
    fired = []
    volumes = []

    async def scenario():
        monitor = VoiceActivityMonitor(
            level_source=lambda: 0.0,
            on_silence=lambda: fired.append(True),
            on_volume=volumes.append,
            config=FAST,
        )
        monitor.start()
        await asyncio.sleep(0.2)
        return monitor

    monitor = asyncio.run(scenario())

    assert fired == [True]
    assert not monitor.running
    assert volumes


def test_monitor_awaits_async_callback():
    fired = []

    async def on_silence():
        await asyncio.sleep(0)
        fired.append(True)

    async def scenario():
        monitor = VoiceActivityMonitor(level_source=lambda: 0.0, on_silence=on_silence, config=FAST)
        monitor.start()
        await asyncio.sleep(0.2)

    asyncio.run(scenario())
    assert fired == [True]


def test_monitor_keeps_running_while_speaking():
    fired = []

    async def scenario():
        monitor = VoiceActivityMonitor(
            level_source=lambda: 0.8,
            on_silence=lambda: fired.append(True),
            config=FAST,
        )
        monitor.start()
        await asyncio.sleep(0.1)
        running = monitor.running
        monitor.stop()
        return running

    assert asyncio.run(scenario()) is True
    assert fired == []


def test_stop_prevents_callback():
    fired = []
    volumes = []

    async def scenario():
        monitor = VoiceActivityMonitor(
            level_source=lambda: 0.0,
            on_silence=lambda: fired.append(True),
            on_volume=volumes.append,
            config=VADConfig(silence_duration=0.1, poll_interval=0.005),
        )
        monitor.start()
        await asyncio.sleep(0.02)
        monitor.stop()
        await asyncio.sleep(0.2)
        return monitor

    monitor = asyncio.run(scenario())

    assert fired == []
    assert not monitor.running
    assert volumes[-1] == 0.0
