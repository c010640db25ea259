from typing import Any, Optional

from pydantic import ValidationError


class MalformedInputError(ValueError):
    """Caller-supplied record rejected at the ingress boundary."""

    def __init__(self, entity: str, errors: Optional[list[dict[str, Any]]] = None, message: str = ""):
        self.entity = entity
        self.errors = errors or []
        detail = message or "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in self.errors
        )
        super().__init__(f"invalid {entity}: {detail or 'malformed payload'}")

    @classmethod
    def from_validation_error(cls, entity: str, exc: ValidationError) -> "MalformedInputError":
        return cls(entity, errors=exc.errors(include_url=False, include_context=False, include_input=False))


class PersistenceError(RuntimeError):
    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class InteractionNotFoundError(LookupError):
    def __init__(self, interaction_id: str):
        super().__init__(f"interaction {interaction_id} not found")
        self.interaction_id = interaction_id


class InsightNotFoundError(LookupError):
    def __init__(self, insight_id: str):
        super().__init__(f"insight {insight_id} not found")
        self.insight_id = insight_id


class FeedbackAlreadyRecordedError(RuntimeError):
    def __init__(self, target: str, target_id: str):
        super().__init__(f"feedback already recorded for {target} {target_id}")
        self.target = target
        self.target_id = target_id
