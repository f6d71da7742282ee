"""
Reconciliation Controller
=========================

Drives one message through its augmentation lifecycle:

    Untouched --arrival--> Generating --content--> Merged
    Merged    --edit-----> Re-merging -----------> Merged
    Merged    --manual---> Generating(manual) ---> Merged

Only one generation+merge cycle runs at a time. The GenerationGate is a
single-slot token: arrivals that find it held are dropped, manual requests are
reported, nothing is queued.

After a programmatic re-render in the edit handler, an edit suppression window
stays open briefly so the host echoing the render back as an edit event does
not trigger a second reconciliation.

Author: auxmerge contributors | 2026-10-19
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from .config import SettingsManager
from .logging_utils import AuditLog
from .markers import parse_markers
from .merger import merge
from .monitoring import MetricsCollector, get_metrics
from .notices import NoticeBoard
from .transcript import Message, Transcript, TranscriptEvent

logger = logging.getLogger(__name__)


class AugmentationOutcome(str, Enum):
    """What a controller handler did."""
    MERGED = "merged"                    # secondary content committed and rendered
    NO_CONTENT = "no_content"            # generator answered, nothing usable parsed
    NO_RESPONSE = "no_response"          # generator returned nothing
    DISABLED = "disabled"
    NOT_CONFIGURED = "not_configured"    # no connection profile
    BUSY = "busy"                        # gate held
    SKIPPED = "skipped"                  # missing/user/already processed/no state
    FAILED = "failed"                    # generator or merge raised
    UNCHANGED = "unchanged"              # edit left the rendered text as is
    RECONCILED = "reconciled"            # edit folded into primary_original
    SUPPRESSED = "suppressed"            # edit arrived inside the suppression window


class SecondaryGenerator(Protocol):
    async def generate(self, primary_text: str) -> Optional[str]:
        ...


# =============================================================================
# Concurrency primitives
# =============================================================================

class GenerationGate:
    """
    Single-slot token guarding the generation+merge cycle.

    The event loop is single-threaded, so try_acquire needs no lock: there is
    no suspension point between the check and the set.
    """

    def __init__(self):
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


class EditSuppressionWindow:
    """Expiring boolean; active for `duration` seconds after open()."""

    def __init__(self, duration: float = 0.1, clock: Callable[[], float] = time.monotonic):
        self.duration = duration
        self._clock = clock
        self._until: Optional[float] = None

    def open(self) -> None:
        self._until = self._clock() + self.duration

    def close(self) -> None:
        self._until = None

    @property
    def active(self) -> bool:
        if self._until is None:
            return False
        if self._clock() >= self._until:
            self._until = None
            return False
        return True


# =============================================================================
# Controller
# =============================================================================

class ReconciliationController:
    """
    Reacts to message arrival, manual regeneration and edits.

    Handlers never raise. Each returns an AugmentationOutcome; failures become
    an error notice carrying the exception message.

    Example:
        controller = ReconciliationController(transcript, service, settings_manager)
        controller.register(transcript)
        await transcript.receive_message("assistant", "Hello there.")
    """

    def __init__(
        self,
        transcript: Transcript,
        generator: SecondaryGenerator,
        settings_manager: SettingsManager,
        notices: Optional[NoticeBoard] = None,
        metrics: Optional[MetricsCollector] = None,
        audit_log: Optional[AuditLog] = None,
        gate: Optional[GenerationGate] = None,
        suppression_window: Optional[EditSuppressionWindow] = None,
    ):
        self.transcript = transcript
        self.generator = generator
        self.settings_manager = settings_manager
        self.notices = notices or NoticeBoard()
        self.metrics = metrics or get_metrics()
        self.audit_log = audit_log
        self.gate = gate or GenerationGate()
        if suppression_window is None:
            suppression_window = EditSuppressionWindow(settings_manager.config.edit_suppression_ms / 1000.0)
        self.suppression_window = suppression_window

    @property
    def enabled(self) -> bool:
        return self.settings_manager.settings.enabled

    def register(self, transcript: Optional[Transcript] = None) -> None:
        """Subscribe the handlers to the transcript's arrival and edit events."""
        transcript = transcript or self.transcript
        self.transcript = transcript
        transcript.on(TranscriptEvent.MESSAGE_RECEIVED, self.on_message_received)
        transcript.on(TranscriptEvent.MESSAGE_EDITED, self.on_message_edited)

    def unregister(self) -> None:
        self.transcript.off(TranscriptEvent.MESSAGE_RECEIVED, self.on_message_received)
        self.transcript.off(TranscriptEvent.MESSAGE_EDITED, self.on_message_edited)

    # -- helpers --------------------------------------------------------------

    def _record(self, handler: str, outcome: AugmentationOutcome) -> AugmentationOutcome:
        self.metrics.increment("augmentation.outcome", labels={"handler": handler, "outcome": outcome.value})
        return outcome

    def _audit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.audit_log is None:
            return
        try:
            self.audit_log.log_event(event_type, data)
        except OSError as e:
            logger.error(f"Audit log write failed: {e}")

    async def _run_cycle(self, message: Message, primary_text: str, manual: bool) -> AugmentationOutcome:
        """Generate, parse, and on content commit + merge + render. Caller holds the gate."""
        with self.metrics.timer("generation.duration"):
            raw = await self.generator.generate(primary_text)

        if not raw:
            logger.info(f"No auxiliary response for message {message.id}")
            self.notices.warning("Auxiliary model returned no response")
            return AugmentationOutcome.NO_RESPONSE

        instructions = parse_markers(raw, metrics=self.metrics)
        self._audit("generation", {"message_id": message.id, "manual": manual, "raw_secondary_output": raw})

        if instructions is None or not instructions.has_content():
            logger.info(f"No changes to message {message.id}")
            self.notices.info("No auxiliary content generated" if manual else "No auxiliary content to merge")
            return AugmentationOutcome.NO_CONTENT

        message.augmentation.commit(primary_text, raw, instructions)
        rendered = merge(primary_text, instructions)
        self.transcript.render(message.id, rendered)

        logger.info(
            f"Merged auxiliary content into message {message.id} "
            f"(length {len(rendered)}, original {len(primary_text)})"
        )
        self._audit("merge", {"message_id": message.id, "instructions": instructions.to_dict()})
        self.notices.success("Auxiliary response regenerated" if manual else "Auxiliary content merged")
        return AugmentationOutcome.MERGED

    # -- arrival --------------------------------------------------------------

    def _configuration_problem(self) -> Optional[str]:
        """Reason the selected connection profile cannot be used, or None."""
        if self.settings_manager.get_selected_profile() is None:
            return "No connection profile selected"
        if not self.settings_manager.is_configured():
            return "Selected profile has no API configured"
        return None

    async def on_message_received(self, message_id: Optional[int] = None) -> AugmentationOutcome:
        """Automatic augmentation of a newly arrived message (default: the last one)."""
        handler = "arrival"
        try:
            if not self.enabled:
                logger.debug("Auxiliary model disabled, ignoring message")
                return self._record(handler, AugmentationOutcome.DISABLED)

            if self.gate.held:
                logger.info("Already processing, skipping")
                return self._record(handler, AugmentationOutcome.BUSY)

            if message_id is None:
                message_id = self.transcript.last_message_id()
            message = self.transcript.get_message(message_id) if message_id is not None else None
            if message is None or message.is_user:
                return self._record(handler, AugmentationOutcome.SKIPPED)

            if message.augmentation.processed:
                return self._record(handler, AugmentationOutcome.SKIPPED)

            problem = self._configuration_problem()
            if problem:
                logger.warning(problem)
                self.notices.warning(problem)
                return self._record(handler, AugmentationOutcome.NOT_CONFIGURED)

            message.augmentation.processed = True
            self.gate.try_acquire()
            try:
                logger.info(f"Processing message {message.id}...")
                self.notices.info("Generating with auxiliary model...")
                outcome = await self._run_cycle(message, message.content, manual=False)
            finally:
                self.gate.release()
        except Exception as e:
            logger.error(f"Error processing message {message_id}: {e}")
            self.notices.error(f"Error: {e}")
            outcome = AugmentationOutcome.FAILED

        return self._record(handler, outcome)

    # -- manual regeneration --------------------------------------------------

    async def regenerate(self, message_id: int) -> AugmentationOutcome:
        """User-requested regeneration, always against the stored primary text when present."""
        handler = "regenerate"
        try:
            if not self.enabled:
                self.notices.warning("AuxModel is disabled")
                return self._record(handler, AugmentationOutcome.DISABLED)

            if self.gate.held:
                self.notices.warning("Already processing")
                return self._record(handler, AugmentationOutcome.BUSY)

            message = self.transcript.get_message(message_id)
            if message is None or message.is_user:
                self.notices.warning("Invalid message")
                return self._record(handler, AugmentationOutcome.SKIPPED)

            problem = self._configuration_problem()
            if problem:
                logger.warning(problem)
                self.notices.warning(problem)
                return self._record(handler, AugmentationOutcome.NOT_CONFIGURED)

            message.augmentation.processed = True
            self.gate.try_acquire()
            try:
                self.notices.info("Regenerating auxiliary response...")
                primary_text = message.augmentation.primary_original or message.content
                outcome = await self._run_cycle(message, primary_text, manual=True)
            finally:
                self.gate.release()
        except Exception as e:
            logger.error(f"Error regenerating message {message_id}: {e}")
            self.notices.error(f"Error: {e}")
            outcome = AugmentationOutcome.FAILED

        return self._record(handler, outcome)

    async def regenerate_last_message(self) -> AugmentationOutcome:
        last_id = self.transcript.last_message_id()
        message = self.transcript.get_message(last_id) if last_id is not None else None
        if message is None or message.is_user:
            self.notices.warning("The last message is not an AI response")
            return self._record("regenerate", AugmentationOutcome.SKIPPED)
        return await self.regenerate(last_id)

    # -- edit -----------------------------------------------------------------

    def on_message_edited(self, message_id: int) -> AugmentationOutcome:
        """
        Fold a user edit of a merged message back into its primary text.

        The edited displayed text becomes primary_original and the stored
        instructions are merged again on top of it. Secondary content already
        present in the edited text is therefore merged a second time.
        """
        handler = "edit"
        try:
            if self.suppression_window.active:
                return self._record(handler, AugmentationOutcome.SUPPRESSED)

            if self.gate.held:
                return self._record(handler, AugmentationOutcome.BUSY)

            message = self.transcript.get_message(message_id)
            if message is None or message.is_user or not message.augmentation.can_reconcile():
                return self._record(handler, AugmentationOutcome.SKIPPED)

            state = message.augmentation
            edited_text = message.content
            if edited_text == merge(state.primary_original, state.instructions):
                return self._record(handler, AugmentationOutcome.UNCHANGED)

            state.primary_original = edited_text
            rendered = merge(edited_text, state.instructions)
            self.transcript.render(message.id, rendered)
            self.suppression_window.open()

            logger.info(f"Re-merged auxiliary content after edit for message {message.id}")
            self._audit("reconcile", {"message_id": message.id, "primary_original": edited_text})
            return self._record(handler, AugmentationOutcome.RECONCILED)
        except Exception as e:
            logger.error(f"Error reconciling edit of message {message_id}: {e}")
            self.notices.error(f"Error: {e}")
            return self._record(handler, AugmentationOutcome.FAILED)

    # -- queries --------------------------------------------------------------

    @staticmethod
    def rendered_text(message: Message) -> str:
        state = message.augmentation
        if state.can_reconcile():
            return merge(state.primary_original, state.instructions)
        return message.content

    @staticmethod
    def has_aux_content(message: Message) -> bool:
        return message.augmentation.has_aux_content()
