from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from skoolresults.core.errors import PreconditionError
from skoolresults.state.edit_buffer import EditBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    term_id: Optional[str] = None
    class_term_id: Optional[str] = None
    subject_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.term_id and self.class_term_id and self.subject_id)


@dataclass(frozen=True)
class SaveTicket:
    """Issued when a save starts; carries the rows handed to the save call."""

    generation: int
    student_ids: Tuple[str, ...]
    rows: Tuple[Dict[str, Any], ...]

    def submitted(self) -> Dict[str, Dict[str, Any]]:
        return dict(zip(self.student_ids, self.rows))


@dataclass
class AppState:
    selection: Selection = field(default_factory=Selection)
    buffer: EditBuffer = field(default_factory=EditBuffer)
    generation: int = 0

    def select(self, term_id: Optional[str], class_term_id: Optional[str], subject_id: Optional[str]) -> bool:
        new_selection = Selection(term_id, class_term_id, subject_id)
        if new_selection == self.selection:
            return False
        self.selection = new_selection
        self.buffer.clear()
        self.generation += 1
        return True

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def begin_save(self) -> SaveTicket:
        if not self.selection.is_complete:
            raise PreconditionError("Select a term, class and subject before saving.")
        student_ids, rows = self.buffer.pending_rows()
        self.generation += 1
        return SaveTicket(generation=self.generation, student_ids=tuple(student_ids), rows=tuple(rows))

    def apply_save_response(self, ticket: SaveTicket, assessment_ids: Mapping[str, str]) -> bool:
        if not self.is_current(ticket.generation):
            logger.info("Dropping save response for superseded request (generation %s)", ticket.generation)
            return False
        self.buffer.mark_saved(ticket.student_ids, assessment_ids, ticket.submitted())
        return True

    def clear(self) -> None:
        self.selection = Selection()
        self.buffer.clear()
        self.generation += 1
