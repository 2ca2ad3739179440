"""Data readers, entity mappings, and sampling utilities."""

from .indexers import EntityMapping, build_index_mapping  # noqa: F401
from .ratings import RatingData, read_ratings, read_ratings_file  # noqa: F401
from .relations import (  # noqa: F401
    RelationFormatError,
    SparseBinaryRelation,
    read_attributes,
    read_attributes_file,
    read_relation,
    read_relation_file,
)
from .samplers import NoEligibleItemsError, sample_eligible_item  # noqa: F401
