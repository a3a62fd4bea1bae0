from dataclasses import dataclass
from typing import Any, Dict

# Only "login" is reserved; every other kind and its payload belong to the application.
@dataclass
class Envelope:
    kind: str              # "login" | application-defined
    payload: Any = None    # JSON-compatible value, shape decided by kind

    def __post_init__(self):
        # JSON has one sequence type; tuples become lists so the envelope equals its decoded copy
        self.payload = _as_json_value(self.payload)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "payload": self.payload}


def _as_json_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_as_json_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _as_json_value(v) for k, v in value.items()}
    return value
