"""
Unit tests for the shutdown controller.
"""

import signal
import threading

from tcprelay.core.shutdown import ShutdownController


class TestShutdownController:

    def test_initially_running(self):
        assert ShutdownController().should_exit is False

    def test_request_stop_is_idempotent(self):
        controller = ShutdownController()

        controller.request_stop()
        controller.request_stop()

        assert controller.should_exit is True

    def test_reset(self):
        controller = ShutdownController()
        controller.request_stop()
        controller.reset()

        assert controller.should_exit is False

    def test_stop_from_another_thread(self):
        controller = ShutdownController()
        thread = threading.Thread(target=controller.request_stop)
        thread.start()
        thread.join()

        assert controller.should_exit is True


class TestSignalHandling:

    def test_sigint_sets_flag_and_handlers_are_restored(self):
        original_int = signal.getsignal(signal.SIGINT)
        original_term = signal.getsignal(signal.SIGTERM)
        controller = ShutdownController()

        with controller.capture_signals():
            assert signal.getsignal(signal.SIGINT) == controller._handle_signal
            signal.raise_signal(signal.SIGINT)
            assert controller.should_exit is True

        assert signal.getsignal(signal.SIGINT) == original_int
        assert signal.getsignal(signal.SIGTERM) == original_term

    def test_sigterm_sets_flag(self):
        controller = ShutdownController()

        with controller.capture_signals():
            signal.raise_signal(signal.SIGTERM)

        assert controller.should_exit is True

    def test_install_off_main_thread_is_skipped(self):
        controller = ShutdownController()
        original = signal.getsignal(signal.SIGINT)
        result = []

        thread = threading.Thread(target=lambda: result.append(controller.install()))
        thread.start()
        thread.join()

        assert result == [False]
        assert signal.getsignal(signal.SIGINT) == original
