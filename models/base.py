from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DomainModel(BaseModel):
    """
    Base for all in-memory domain records.

    Attributes are snake_case in Python; model_dump(by_alias=True) yields the
    camelCase shape handed to the presentation layer.  Either spelling is
    accepted on construction.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )
