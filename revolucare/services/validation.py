"""Input validation shared by the service layer."""
from typing import Any, Mapping, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from revolucare.exceptions import ValidationError

M = TypeVar("M", bound=BaseModel)


def validate_input(model: Type[M], data: Union[M, Mapping[str, Any]], what: str = "request") -> M:
    """
    Validate caller input against a pydantic model.

    Model instances are re-validated so constraints hold regardless of how
    the caller built them.

    Raises:
        ValidationError: With one ``{"field", "message"}`` entry per problem
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {what}", details={"errors": errors}) from e
