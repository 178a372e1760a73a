"""
Upload summary returned to clients
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List

from exam_portal.services.ingest.validation import Rejected


@dataclass
class UploadReport:
    noun: str
    total_processed: int
    created: int = 0
    accepted: int = 0
    rejections: List[Rejected] = field(default_factory=list)
    failed_chunks: int = 0
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.aborted

    @property
    def errors(self) -> List[Dict[str, Any]]:
        return [rejection.to_dict() for rejection in self.rejections]

    def message(self, display_limit: int = 5) -> str:
        text = f"Successfully created {self.created} {self.noun}"
        if not self.rejections:
            return text
        shown = [f"Row {r.row}: {r.message}" for r in self.rejections[:display_limit]]
        text += f". {len(self.rejections)} row(s) had errors: " + "; ".join(shown)
        remaining = len(self.rejections) - len(shown)
        if remaining > 0:
            text += f"; and {remaining} more"
        return text

    def summary(self) -> Dict[str, Any]:
        """Fields shared by the JSON response and the final progress event"""
        return {
            "success": self.success,
            "created": self.created,
            "errors": self.errors,
            "totalProcessed": self.total_processed,
        }

    def to_dict(self, display_limit: int = 5) -> Dict[str, Any]:
        return {"message": self.message(display_limit), **self.summary()}
