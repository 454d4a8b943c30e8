# utils/sentinels.py
from typing import Any, Self, ClassVar, Optional
from pydantic_core import core_schema
from pydantic import PydanticUserError
from pydantic.json_schema import JsonSchemaValue

class Missing:
	"""Marks an optional field or filter that was not supplied at all (distinct from ``None``)."""
	_instance: ClassVar[Optional["Missing"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __repr__(self) -> str:
		return "MISSING"

	def __bool__(self) -> bool:
		return False

	@classmethod
	def __get_pydantic_core_schema__(cls, _source, _handler) -> core_schema.CoreSchema:
		def validate(v):
			if v is cls._instance:
				return v
			raise PydanticUserError('missing_sentinel', 'value is not the Missing sentinel')
		return core_schema.no_info_plain_validator_function(validate)

	@classmethod
	def __get_pydantic_json_schema__(cls, _core_schema: core_schema.CoreSchema, _handler) -> JsonSchemaValue:
		return {
			"title": "Missing sentinel (internal)",
			"type": "string",
			"const": "MISSING",
			"description": "Internal placeholder meaning 'not provided'.",
			"readOnly": True,
			"writeOnly": True,
		}


MISSING = Missing()


def provided(value: Any) -> bool:
	return value is not MISSING


def provided_fields(payload: Any, *, skip: tuple[str, ...] = ("id",)) -> dict[str, Any]:
	"""Collect the attributes of an update schema that were actually supplied."""
	return {
		name: getattr(payload, name)
		for name in type(payload).model_fields
		if name not in skip and provided(getattr(payload, name))
	}
