"""Confluence field mapping table — source field → index field and type."""

from __future__ import annotations

from qbconfluence.model import (
    ContentCategory,
    FieldMapping,
    FieldType,
    RepositoryConfiguration,
)

CONFLUENCE_DATE_FORMAT = "yyyy-MM-dd'T'HH:mm:ss'Z'"

_ITEM_TYPE = FieldMapping(
    data_source_field_name="itemType",
    index_field_name="_category",
    index_field_type=FieldType.STRING,
)
_URL = FieldMapping(
    data_source_field_name="url",
    index_field_name="_source_uri",
    index_field_type=FieldType.STRING,
)

CONFLUENCE_FIELD_MAPPINGS: dict[ContentCategory, tuple[FieldMapping, ...]] = {
    ContentCategory.SPACE: (_ITEM_TYPE, _URL),
    ContentCategory.PAGE: (
        _ITEM_TYPE,
        _URL,
        FieldMapping(
            data_source_field_name="author",
            index_field_name="_authors",
            index_field_type=FieldType.STRING_LIST,
        ),
        FieldMapping(
            data_source_field_name="createdDate",
            index_field_name="_created_at",
            index_field_type=FieldType.DATE,
            date_field_format=CONFLUENCE_DATE_FORMAT,
        ),
        FieldMapping(
            data_source_field_name="modifiedDate",
            index_field_name="_last_updated_at",
            index_field_type=FieldType.DATE,
            date_field_format=CONFLUENCE_DATE_FORMAT,
        ),
    ),
}


def repository_configurations(
    table: dict[ContentCategory, tuple[FieldMapping, ...]] | None = None,
) -> tuple[RepositoryConfiguration, ...]:
    """Wrap the mapping table into the connector's ``repositoryConfigurations`` shape."""
    table = CONFLUENCE_FIELD_MAPPINGS if table is None else table
    return tuple(
        RepositoryConfiguration(category=category, field_mappings=mappings)
        for category, mappings in table.items()
    )


def validate_field_mappings(
    table: dict[ContentCategory, tuple[FieldMapping, ...]],
) -> list[str]:
    """Return a description of every defect in *table*; empty when valid."""
    problems: list[str] = []
    for category, mappings in table.items():
        seen: set[str] = set()
        for m in mappings:
            if m.index_field_name in seen:
                problems.append(
                    f"{category}: index field '{m.index_field_name}' is mapped more than once"
                )
            seen.add(m.index_field_name)

            if m.index_field_type == FieldType.DATE and not m.date_field_format:
                problems.append(
                    f"{category}: DATE mapping '{m.data_source_field_name}' has no date format"
                )
            if m.index_field_type != FieldType.DATE and m.date_field_format is not None:
                problems.append(
                    f"{category}: non-DATE mapping '{m.data_source_field_name}' "
                    "carries a date format"
                )
    return problems
