import logging
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

SIMPLE_TYPES = (int, float, str, bool)


class CustomBaseModel(BaseModel):
    """Custom base model for all response schemas.
    - coerce simple typed values (int, float, str, bool) before init
    - fall back to the field default when a value cannot be coerced
    Response payloads are assembled from database rows and token claims, so a
    stray type should degrade to the default instead of a 500.
    """

    def __init__(self, **data: Any) -> None:
        fields = self.__class__.model_fields
        for attr, value in data.items():
            field = fields.get(attr)
            if field is None or value is None:
                continue
            attr_type = field.annotation
            if attr_type not in SIMPLE_TYPES or isinstance(value, attr_type):
                continue
            try:  # try to convert the value to the type of the attribute
                data[attr] = attr_type(value)
            except (TypeError, ValueError):
                logger.warning(
                    "invalid value for %s.%s, using default", self.__class__.__name__, attr
                )
                data[attr] = field.get_default(call_default_factory=True)
        super().__init__(**data)
