from typing import Dict, Any, Type, List
from pydantic import BaseModel
from app.core.logging_config import get_logger

logger = get_logger("drift_detection")

def detect_drift(payload: Dict[str, Any], model: Type[BaseModel], source_name: str) -> List[str]:
    """
    Compares a raw upstream row against the schema it is parsed into.
    Logs a warning when required keys are gone (the row will fail validation) and a
    debug line for optional keys the upstream stopped sending. Returns the missing keys.
    """
    incoming_keys = set(payload.keys())
    missing_required = []
    missing_optional = []

    for name, field in model.model_fields.items():
        key = field.alias or name
        if key in incoming_keys or name in incoming_keys:
            continue
        if field.is_required():
            missing_required.append(key)
        else:
            missing_optional.append(key)

    if missing_required:
        logger.warning("potential_schema_drift", source=source_name, schema=model.__name__,
                       missing_required=missing_required, incoming_keys=sorted(incoming_keys))
    elif missing_optional:
        logger.debug("optional_fields_absent", source=source_name, schema=model.__name__,
                     missing=missing_optional)

    return missing_required + missing_optional
