"""Background service lifecycle and wake -> listen -> respond activation cycle.

States: IDLE -> LISTENING -> ACTIVE -> LISTENING; LISTENING/ACTIVE -> STOPPING
-> IDLE; any state -> EMERGENCY.

All state lives on one asyncio event loop and is only changed through
``_transition()``. Wake word callbacks, timer callbacks and the activation
task all run on that loop; blocking work (STT, TTS, AI calls, shell commands)
is pushed to the default executor.
"""

import asyncio
import enum
import functools
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone

from jarvis.assistant.commands import CommandClassifier, CommandIntent, PhraseClassifier, extract_system_actions
from jarvis.assistant.conversation import Conversation
from jarvis.assistant.metrics import MetricsLogger
from jarvis.assistant.telemetry import ai_metrics_payload, command_metrics_payload
from jarvis.audio.earcon import earcon_pcm
from jarvis.audio.manager import AudioManager
from jarvis.llm.ai_service import AIService
from jarvis.llm.prompt import clean_for_tts, truncate_for_speech
from jarvis.stt import SpeechToText
from jarvis.system.manager import SystemManager
from jarvis.tts import TextToSpeech
from jarvis.wake.detector import WakeWordDetector

log = logging.getLogger(__name__)

_CYAN = "\033[36m"
_RST = "\033[0m"

ACKNOWLEDGEMENT = "Yes? How can I help you?"
NO_COMMAND_RESPONSE = "I didn't hear a command. Please try again."
LISTEN_ERROR_RESPONSE = "I apologize, but I encountered an error. Please try again."
PROCESSING_ERROR_RESPONSE = "I apologize, but I encountered an error while processing your command."
EMERGENCY_RESPONSE = "Emergency shutdown initiated!"


class State(enum.Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    ACTIVE = "ACTIVE"
    STOPPING = "STOPPING"
    EMERGENCY = "EMERGENCY"


_ALLOWED_TRANSITIONS: dict[State, frozenset[State]] = {
    State.IDLE: frozenset({State.LISTENING, State.EMERGENCY}),
    State.LISTENING: frozenset({State.ACTIVE, State.STOPPING, State.EMERGENCY}),
    State.ACTIVE: frozenset({State.LISTENING, State.STOPPING, State.EMERGENCY}),
    State.STOPPING: frozenset({State.IDLE, State.EMERGENCY}),
    State.EMERGENCY: frozenset({State.LISTENING, State.EMERGENCY}),
}

_RUNNING_STATES = frozenset({State.LISTENING, State.ACTIVE, State.STOPPING})


class InvalidTransition(RuntimeError):
    def __init__(self, old: State, new: State):
        super().__init__(f"Invalid state transition {old.value} -> {new.value}")
        self.old = old
        self.new = new


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class JarvisService:
    """Wires audio, wake word detection, speech, AI and system access together."""

    def __init__(
        self,
        config: Mapping,
        audio: AudioManager,
        wake_detector: WakeWordDetector,
        ai: AIService,
        system: SystemManager,
        stt: SpeechToText,
        tts: TextToSpeech,
        metrics: MetricsLogger,
        classifier: CommandClassifier | None = None,
    ):
        self._config = config
        self._audio = audio
        self._detector = wake_detector
        self._ai = ai
        self._system = system
        self._stt = stt
        self._tts = tts
        self._metrics = metrics

        jarvis_cfg = config["jarvis"]
        service_cfg = config.get("service", {})
        metrics_cfg = config.get("metrics", {})
        self._name = jarvis_cfg.get("name", "JARVIS")
        self._wake_word = jarvis_cfg["wakeWord"]
        self._listening_timeout_ms = jarvis_cfg["listeningTimeout"]
        self._command_timeout_s = (
            self._listening_timeout_ms + service_cfg.get("commandTimeoutGraceMs", 500)
        ) / 1000.0
        self._max_response_length = jarvis_cfg.get("maxResponseLength", 500)
        self._shutdown_timeout_s = service_cfg.get("shutdownTimeoutMs", 30000) / 1000.0
        self._earcons = service_cfg.get("earcons", True)
        self._earcon_volume = service_cfg.get("earconVolume", 0.3)
        self._sample_rate = config["audio"]["sampleRate"]
        self._channels = config["audio"]["channels"]
        self._log_transcripts = metrics_cfg.get("logTranscripts", False)
        self._log_responses = metrics_cfg.get("logResponses", False)

        self._classifier = classifier or PhraseClassifier(wake_word=self._wake_word)
        self._conversation = Conversation(config["ai"].get("memoryRetention", 10))

        self._state = State.IDLE
        self._activation_task: asyncio.Task | None = None
        self._listen_task: asyncio.Future | None = None
        self._command_timer: asyncio.TimerHandle | None = None
        self._command_timed_out = False
        self._stopped = asyncio.Event()
        self._stopped.set()

    # ── State ───────────────────────────────────────────────────

    @property
    def state(self) -> State:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in _RUNNING_STATES

    @property
    def is_active(self) -> bool:
        return self._state is State.ACTIVE

    @property
    def is_shutting_down(self) -> bool:
        return self._state is State.STOPPING

    @property
    def is_emergency(self) -> bool:
        return self._state is State.EMERGENCY

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    def new_session(self) -> Conversation:
        """Start a fresh conversation; the previous one is left untouched."""
        self._conversation = Conversation(self._conversation.retention)
        return self._conversation

    def _transition(self, new_state: State) -> None:
        old = self._state
        if new_state not in _ALLOWED_TRANSITIONS[old]:
            raise InvalidTransition(old, new_state)
        self._state = new_state
        if new_state in (State.IDLE, State.EMERGENCY):
            self._stopped.set()
        else:
            self._stopped.clear()
        log.info("[%s] -> [%s]", old.value, new_state.value)
        self._metrics.log("state_transition", old=old.value, new=new_state.value)

    async def wait_stopped(self) -> None:
        """Wait until the service is back in IDLE or EMERGENCY."""
        await self._stopped.wait()

    def get_status(self) -> dict:
        return {
            "state": self._state.value,
            "running": self.is_running,
            "active": self.is_active,
            "shutting_down": self.is_shutting_down,
            "emergency": self.is_emergency,
            "wake_word_detecting": self._detector.is_detecting,
            "ai_initialized": self._ai.is_initialized(),
            "audio_listening": self._audio.is_listening,
        }

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._state in (State.LISTENING, State.ACTIVE):
            log.warning("%s service is already running", self._name)
            return
        if self._state is State.STOPPING:
            log.warning("%s service is shutting down, cannot start", self._name)
            return

        log.info("Starting %s service...", self._name)
        try:
            self._ai.initialize()
            self._detector.remove_callback(self._on_wake_word)
            self._detector.on_wake_word(self._on_wake_word)
            await self._detector.start_detection()
        except Exception:
            log.exception("Failed to start %s service", self._name)
            raise

        self._transition(State.LISTENING)
        self._metrics.log("service_started", wake_word=self._wake_word)
        log.info("%s service started successfully", self._name)
        log.info('Wake word: "%s"', self._wake_word)
        log.info('To shutdown safely, say: "%s shutdown"', self._name)

    async def stop(self) -> None:
        """Graceful stop; escalates to an emergency reset if it takes too long."""
        if self._state not in (State.LISTENING, State.ACTIVE):
            return

        log.info("Stopping %s service...", self._name)
        self._transition(State.STOPPING)
        try:
            await asyncio.wait_for(self._shutdown_steps(_current_task()), timeout=self._shutdown_timeout_s)
        except asyncio.TimeoutError:
            log.warning("Shutdown timeout reached, forcing emergency shutdown")
            self._metrics.log("shutdown_escalated", timeout_s=self._shutdown_timeout_s)
            self._force_shutdown()
            return
        except Exception:
            log.exception("Failed to stop %s service", self._name)
            self._force_shutdown()
            raise

        if self._state is State.STOPPING:
            self._transition(State.IDLE)
        self._metrics.log("service_stopped")
        self._metrics.flush()
        log.info("%s service stopped successfully", self._name)

    async def _shutdown_steps(self, caller: asyncio.Task | None) -> None:
        try:
            await self._detector.stop_detection()
        except Exception:
            log.warning("Error stopping wake word detection", exc_info=True)

        self._cancel_command_timer()
        await self._cancel_activation(caller)

        try:
            if self._audio.is_listening:
                self._audio.stop_listening()
        except Exception:
            log.warning("Error stopping audio manager", exc_info=True)

    def emergency_stop(self) -> None:
        """Reset to a stopped state immediately, whatever is in flight."""
        log.warning("Emergency stop initiated")
        self._metrics.log("emergency_stop", previous=self._state.value)
        self._force_shutdown()

    def _force_shutdown(self) -> None:
        log.warning("Forcing emergency shutdown...")
        self._cancel_command_timer()
        self._detector.abort()
        self._audio.stop_recording()
        try:
            if self._audio.is_listening:
                self._audio.stop_listening()
        except Exception:
            log.warning("Error stopping audio manager", exc_info=True)

        task = self._activation_task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        self._transition(State.EMERGENCY)
        self._metrics.flush()
        log.info("Emergency shutdown completed")

    async def _cancel_activation(self, caller: asyncio.Task | None) -> None:
        task = self._activation_task
        if task is None or task.done() or task is caller:
            return
        task.cancel()
        await asyncio.wait([task])

    def _cancel_command_timer(self) -> None:
        if self._command_timer is not None:
            self._command_timer.cancel()
            self._command_timer = None

    # ── Activation ──────────────────────────────────────────────

    def _on_wake_word(self, detected: bool = True) -> None:
        if self._state is State.ACTIVE:
            log.debug("Already active, ignoring wake word")
            return
        if self._state is not State.LISTENING:
            log.debug("Service is %s, ignoring wake word", self._state.value)
            return

        log.info("Wake word detected, activating %s...", self._name)
        self._transition(State.ACTIVE)
        self._metrics.log("wake_detected")
        self._activation_task = asyncio.create_task(self._run_activation(), name="jarvis-activation")

    async def _run_activation(self) -> None:
        try:
            await self._detector.pause()
            if self._earcons:
                await self._play_earcon("wake")
            await self.respond(ACKNOWLEDGEMENT)
            await self._listen_for_command()
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Error handling wake word detection")
        finally:
            self._cancel_command_timer()
            if self._state is State.ACTIVE:
                self._transition(State.LISTENING)
            self._detector.resume()

    async def _listen_for_command(self) -> None:
        if self._state is not State.ACTIVE:
            log.debug("Service is %s, not listening for commands", self._state.value)
            return

        log.info("Listening for commands...")
        loop = asyncio.get_running_loop()
        self._command_timed_out = False
        self._listen_task = asyncio.ensure_future(self._audio.record_audio(self._listening_timeout_ms))
        self._command_timer = loop.call_later(self._command_timeout_s, self._on_command_timeout)
        try:
            try:
                audio = await self._listen_task
            except asyncio.CancelledError:
                if self._command_timed_out:
                    return
                raise
            finally:
                self._cancel_command_timer()
                self._listen_task = None

            if self._state is not State.ACTIVE:
                return

            command = await loop.run_in_executor(None, self._stt.transcribe, audio, self._sample_rate)
            if command and command.strip():
                log.info("Command received: %s", command)
                self._metrics.log("command_received", text_chars=len(command))
                await self.process_command(command.strip())
            else:
                log.info("No command detected")
                self._metrics.log("no_command")
                await self.respond(NO_COMMAND_RESPONSE)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("Error listening for commands")
            self._metrics.log("pipeline_error", stage="listen", error=str(e))
            await self._respond_error(LISTEN_ERROR_RESPONSE)

    def _on_command_timeout(self) -> None:
        self._command_timer = None
        log.info("Command listening timeout reached")
        self._metrics.log("listening_timeout")
        self._command_timed_out = True
        self._audio.stop_recording()
        if self._listen_task is not None and not self._listen_task.done():
            self._listen_task.cancel()

    # ── Commands ────────────────────────────────────────────────

    async def process_command(self, command: str) -> None:
        """Classify *command* and act on it; failures are spoken, not raised."""
        if self._state not in (State.LISTENING, State.ACTIVE):
            log.debug("Service is %s, not processing command", self._state.value)
            return

        log.info("Processing command: %s", command)
        try:
            intent = self._classifier.classify(command)
            self._metrics.log(
                "command_classified",
                **command_metrics_payload(command, intent.value, include_text=self._log_transcripts),
            )

            if intent is CommandIntent.EMERGENCY:
                log.warning("Emergency stop command detected")
                await self.respond(EMERGENCY_RESPONSE)
                self.emergency_stop()
                return

            if intent is CommandIntent.SHUTDOWN:
                log.info("Shutdown command detected")
                if self._earcons:
                    await self._play_earcon("goodbye")
                await self.respond(f"Shutting down {self._name} service. Goodbye!")
                await self.stop()
                return

            if intent is CommandIntent.SHUTDOWN_UNCONFIRMED:
                log.info("Shutdown command without wake word, asking for confirmation")
                await self.respond(f'To shutdown {self._name}, please say "{self._name} shutdown"')
                return

            loop = asyncio.get_running_loop()
            system_info = await loop.run_in_executor(None, self._system.get_system_info)
            context = {
                "systemInfo": system_info,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "isActive": self.is_active,
            }

            t0 = time.monotonic()
            response = await loop.run_in_executor(
                None,
                functools.partial(self._ai.process_command, command, context, self._conversation),
            )
            self._metrics.log(
                "ai_response",
                **ai_metrics_payload(response, time.monotonic() - t0, include_text=self._log_responses),
            )

            await self.respond(response)
            await self._execute_system_actions(response)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("Error processing command")
            self._metrics.log("pipeline_error", stage="process", error=str(e))
            await self._respond_error(PROCESSING_ERROR_RESPONSE)

    async def _execute_system_actions(self, response: str) -> None:
        loop = asyncio.get_running_loop()
        for action in extract_system_actions(response):
            try:
                result = await loop.run_in_executor(
                    None, functools.partial(self._system.execute_command, action.command, action.args),
                )
            except Exception:
                log.exception("Error executing system command")
                continue
            self._metrics.log("system_action", type=action.type, success=result.success)
            if result.success:
                log.info("System action %s: %s", action.type, result.stdout.strip())
            else:
                log.warning("System action %s failed: %s", action.type, result.error)

    # ── Speech output ───────────────────────────────────────────

    async def respond(self, message: str) -> None:
        """Speak *message*; if synthesis or playback fails, print it instead."""
        log.info("Responding: %s", message)
        text = truncate_for_speech(clean_for_tts(message), self._max_response_length)
        try:
            loop = asyncio.get_running_loop()
            audio, sample_rate = await loop.run_in_executor(None, self._tts.synthesize, text)
            await self._audio.play_audio(audio, sample_rate)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Error responding")
            print(f"{_CYAN}{self._name}: {message}{_RST}")

    async def _respond_error(self, message: str) -> None:
        if self._earcons:
            await self._play_earcon("error")
        await self.respond(message)

    async def _play_earcon(self, name: str) -> None:
        try:
            pcm = earcon_pcm(name, self._sample_rate, self._earcon_volume, self._channels)
            await self._audio.play_audio(pcm, self._sample_rate)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.debug("Earcon %r failed", name, exc_info=True)
