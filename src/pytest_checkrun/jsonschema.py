"""JSON Schema management."""

from functools import cache
from json import dumps
from typing import TYPE_CHECKING, Literal

from pydantic import RootModel
from pydantic.json_schema import GenerateJsonSchema, JsonSchemaValue

from pytest_checkrun.schema import Configuration, Suite, TestRun

if TYPE_CHECKING:
    from pydantic import BaseModel
    from pydantic_core import core_schema as core

#: Kinds of documents a schema can be generated for.
type DocumentKind = Literal['config', 'suite']


class SuiteDocumentModel(RootModel[Suite | TestRun]):
    """Any document of a suite stream: the header or a test run."""


class SchemaGenerator(GenerateJsonSchema):
    """Custom JSON Schema generator for pytest-checkrun models.

    Fields marked with `x-ref` are moved into shared definitions, so
    repeated descriptive fields are declared once.
    """

    @classmethod
    def get_model(cls, kind: DocumentKind) -> 'type[BaseModel]':
        """Return the root model of a document kind."""
        if kind == 'suite':
            return SuiteDocumentModel
        return Configuration

    @classmethod
    @cache
    def make_schema(cls, kind: DocumentKind = 'config', indent: int | str | None = 4) -> str:
        """Generate the JSON Schema for one kind of document.

        Args:
            kind: Either `config` or `suite`.
            indent: Indentation level used for JSON formatting.

        Returns:
            Serialized JSON Schema string.
        """
        model = cls.get_model(kind)

        schema = {
            **model.model_json_schema(
                by_alias=True,
                schema_generator=cls,
                union_format='primitive_type_array',
            ),
            'title': f'pytest-checkrun {kind}',
            'description': f'JSON Schema for pytest-checkrun {kind} documents',
            '$schema': cls.schema_dialect,
        }

        return dumps(
            schema,
            ensure_ascii=False,
            sort_keys=True,
            indent=indent,
        )

    def generate_inner(self, schema: 'core.CoreSchema') -> JsonSchemaValue:
        """Generates a JSON schema for a given core schema.

        Args:
            schema: The given core schema.

        Returns:
            The generated JSON schema.
        """
        json_schema = super().generate_inner(schema)

        if ref_id := json_schema.get('x-ref'):
            ref_def, ref_link = self.get_cache_defs_ref_schema(ref_id)
            self.definitions[ref_def] = json_schema
            return ref_link

        return json_schema
