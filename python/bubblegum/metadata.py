"""Borsh codec for compressed-NFT metadata (MetadataArgs).

Field order follows the Bubblegum program's ``MetadataArgs`` struct.
Unit-only enums are laid out as their u8 discriminant, which is exactly how
Borsh encodes them.
"""

import io
import json
from typing import Any

from borsh_construct import Bool, CStruct, Option, String, U8, U16, U64, Vec
from construct import ConstructError
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from solders.pubkey import Pubkey  # type: ignore

from .errors import InvalidMetadataError, InvalidPubkeyError
from .merkle import keccak256
from .types import (
    Collection,
    Creator,
    NftMetadata,
    TokenProgramVersion,
    TokenStandard,
    UseMethod,
    Uses,
)
from .utils import b64encode, parse_pubkey

CreatorLayout = CStruct(
    "address" / U8[32],
    "verified" / Bool,
    "share" / U8,
)
CollectionLayout = CStruct(
    "verified" / Bool,
    "key" / U8[32],
)
UsesLayout = CStruct(
    "use_method" / U8,
    "remaining" / U64,
    "total" / U64,
)
MetadataArgsLayout = CStruct(
    "name" / String,
    "symbol" / String,
    "uri" / String,
    "seller_fee_basis_points" / U16,
    "primary_sale_happened" / Bool,
    "is_mutable" / Bool,
    "edition_nonce" / Option(U8),
    "token_standard" / Option(U8),
    "collection" / Option(CollectionLayout),
    "uses" / Option(UsesLayout),
    "token_program_version" / U8,
    "creators" / Vec(CreatorLayout),
)


def encode(metadata: NftMetadata) -> bytes:
    """Encode metadata into its canonical Borsh bytes.

    Raises:
        InvalidMetadataError: If the metadata violates a protocol invariant.
    """
    metadata.validate()
    try:
        return MetadataArgsLayout.build(
            {
                "name": metadata.name,
                "symbol": metadata.symbol,
                "uri": metadata.uri,
                "seller_fee_basis_points": metadata.seller_fee_basis_points,
                "primary_sale_happened": metadata.primary_sale_happened,
                "is_mutable": metadata.is_mutable,
                "edition_nonce": metadata.edition_nonce,
                "token_standard": (
                    int(metadata.token_standard) if metadata.token_standard is not None else None
                ),
                "collection": (
                    {"verified": metadata.collection.verified, "key": bytes(metadata.collection.key)}
                    if metadata.collection
                    else None
                ),
                "uses": (
                    {
                        "use_method": int(metadata.uses.use_method),
                        "remaining": metadata.uses.remaining,
                        "total": metadata.uses.total,
                    }
                    if metadata.uses
                    else None
                ),
                "token_program_version": int(metadata.token_program_version),
                "creators": [
                    {"address": bytes(c.address), "verified": c.verified, "share": c.share}
                    for c in metadata.creators
                ],
            }
        )
    except ConstructError as e:
        raise InvalidMetadataError(f"Metadata cannot be encoded: {e}") from e


def decode(data: bytes) -> NftMetadata:
    """Decode canonical Borsh bytes back into metadata.

    Raises:
        InvalidMetadataError: If the bytes are truncated, carry trailing data,
            hold values outside the schema, or are not the canonical encoding
            (e.g. a bool or option tag other than 0 or 1).
    """
    data = bytes(data)
    stream = io.BytesIO(data)
    try:
        parsed = MetadataArgsLayout.parse_stream(stream)
    except (ConstructError, UnicodeDecodeError) as e:
        raise InvalidMetadataError(f"Malformed metadata bytes: {e}") from e
    if stream.read(1):
        raise InvalidMetadataError("Trailing bytes after metadata")
    # construct reads any non-zero byte as True; only 0x00/0x01 are canonical.
    if MetadataArgsLayout.build(parsed) != data:
        raise InvalidMetadataError("Metadata bytes are not canonically encoded")

    try:
        return NftMetadata(
            name=parsed.name,
            symbol=parsed.symbol,
            uri=parsed.uri,
            seller_fee_basis_points=parsed.seller_fee_basis_points,
            creators=[
                Creator(
                    address=Pubkey.from_bytes(bytes(c.address)),
                    verified=c.verified,
                    share=c.share,
                )
                for c in parsed.creators
            ],
            primary_sale_happened=parsed.primary_sale_happened,
            is_mutable=parsed.is_mutable,
            edition_nonce=parsed.edition_nonce,
            token_standard=(
                TokenStandard(parsed.token_standard) if parsed.token_standard is not None else None
            ),
            collection=(
                Collection(
                    verified=parsed.collection.verified,
                    key=Pubkey.from_bytes(bytes(parsed.collection.key)),
                )
                if parsed.collection is not None
                else None
            ),
            uses=(
                Uses(
                    use_method=UseMethod(parsed.uses.use_method),
                    remaining=parsed.uses.remaining,
                    total=parsed.uses.total,
                )
                if parsed.uses is not None
                else None
            ),
            token_program_version=TokenProgramVersion(parsed.token_program_version),
        )
    except ValueError as e:
        raise InvalidMetadataError(f"Unknown enum value in metadata: {e}") from e


def serialize(metadata: NftMetadata, encoding: str = "base64") -> "str | bytes":
    """Encode metadata, optionally wrapped as base64 text."""
    data = encode(metadata)
    if encoding == "raw":
        return data
    if encoding == "base64":
        return b64encode(data)
    raise ValueError(f"Unknown encoding: {encoding}")


# --- Hashing ---


def hash_creators(creators: list[Creator]) -> bytes:
    """Keccak-256 over each creator's address, verified flag and share."""
    return keccak256(
        b"".join(bytes(c.address) + bytes([int(c.verified), c.share]) for c in creators)
    )


def hash_metadata(metadata: NftMetadata) -> tuple[bytes, bytes]:
    """Compute the (data_hash, creator_hash) pair stored in a leaf."""
    args_hash = keccak256(encode(metadata))
    data_hash = keccak256(args_hash + metadata.seller_fee_basis_points.to_bytes(2, "little"))
    return data_hash, hash_creators(metadata.creators)


# --- Structured input ---


class _InputModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CreatorInput(_InputModel):
    address: str
    verified: bool = False
    share: int = Field(ge=0, le=100)


class CollectionInput(_InputModel):
    key: str
    verified: bool = False


class UsesInput(_InputModel):
    use_method: str | int
    remaining: int = Field(ge=0)
    total: int = Field(ge=0)


class MetadataInput(_InputModel):
    """Self-describing metadata record, as accepted from JSON."""

    name: str
    symbol: str = ""
    uri: str
    seller_fee_basis_points: int = Field(ge=0, le=10000)
    creators: list[CreatorInput] | None = None
    primary_sale_happened: bool = False
    is_mutable: bool = True
    edition_nonce: int | None = Field(default=None, ge=0, le=255)
    token_standard: str | int | None = "non_fungible"
    collection: CollectionInput | None = None
    uses: UsesInput | None = None
    token_program_version: str | int = "original"


def _parse_enum(enum_cls: Any, value: "str | int", field_name: str) -> Any:
    if isinstance(value, int):
        try:
            return enum_cls(value)
        except ValueError as e:
            raise InvalidMetadataError(f"Unknown {field_name}: {value}") from e
    norm = value.replace(" ", "").replace("_", "").replace("-", "").lower()
    for member in enum_cls:
        if member.name.replace("_", "").lower() == norm:
            return member
    raise InvalidMetadataError(f"Unknown {field_name}: {value}")


def metadata_from_dict(data: dict[str, Any]) -> NftMetadata:
    """Parse and validate a structured metadata record.

    Raises:
        InvalidMetadataError: If the record does not match the schema, a
            creator address is malformed or an invariant is violated.
    """
    try:
        record = MetadataInput.model_validate(data)
    except ValidationError as e:
        raise InvalidMetadataError(f"Invalid metadata record: {e}") from e

    try:
        creators = [
            Creator(
                address=parse_pubkey(c.address, "creator address"),
                verified=c.verified,
                share=c.share,
            )
            for c in record.creators or []
        ]
        collection = (
            Collection(
                verified=record.collection.verified,
                key=parse_pubkey(record.collection.key, "collection key"),
            )
            if record.collection
            else None
        )
    except InvalidPubkeyError as e:
        raise InvalidMetadataError(e.message) from e

    metadata = NftMetadata(
        name=record.name,
        symbol=record.symbol,
        uri=record.uri,
        seller_fee_basis_points=record.seller_fee_basis_points,
        creators=creators,
        primary_sale_happened=record.primary_sale_happened,
        is_mutable=record.is_mutable,
        edition_nonce=record.edition_nonce,
        token_standard=(
            _parse_enum(TokenStandard, record.token_standard, "token_standard")
            if record.token_standard is not None
            else None
        ),
        collection=collection,
        uses=(
            Uses(
                use_method=_parse_enum(UseMethod, record.uses.use_method, "use_method"),
                remaining=record.uses.remaining,
                total=record.uses.total,
            )
            if record.uses
            else None
        ),
        token_program_version=_parse_enum(
            TokenProgramVersion, record.token_program_version, "token_program_version"
        ),
    )
    metadata.validate()
    return metadata


def metadata_from_json(metadata_json: str) -> NftMetadata:
    try:
        data = json.loads(metadata_json)
    except json.JSONDecodeError as e:
        raise InvalidMetadataError(f"JSON parse error: {e}") from e
    if not isinstance(data, dict):
        raise InvalidMetadataError("Metadata JSON must be an object")
    return metadata_from_dict(data)
