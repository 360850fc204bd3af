# In src/record_ingest/schemas.py

from typing import Any, TypedDict

from pydantic import BaseModel, ConfigDict, Field

# --- Static Type Hinting (for mypy and IDEs) ---

# A row is an ordered mapping of column name to value. Key order is the
# row's field order and is significant for the canonical form.
Row = dict[str, Any]


class ChangeEventDict(TypedDict):
    region: str
    bucket: str
    key: str


class RowBatchDict(TypedDict):
    """Outbound message body carrying an ordered list of rows."""

    rows: list[Row]


# --- Runtime Validation (using Pydantic) ---


class S3ChangeEvent(BaseModel):
    """
    Announces that a CSV object landed in S3. Published by the upload router
    and consumed by the CSV splitter.
    """

    region: str = Field(..., min_length=1)
    bucket: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)


class RowBatchMessage(BaseModel):
    """Pydantic model for a pre-batched message body: ``{"rows": [...]}``."""

    rows: list[Row]


class SkuProductRow(BaseModel):
    """
    Typed row for the SKU/product catalogue export.

    Field declaration order is the canonical field order; the aliases are the
    column names used in the CSV header and in the serialized form.
    """

    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", str_strip_whitespace=True
    )

    sku_long: str = Field(..., alias="skuLong")
    sku_short: str = Field(..., alias="skuShort")
    product_id: str = Field(..., alias="productID")
    option_id: str = Field(..., alias="optionID")
    sub_category_id: str = Field(..., alias="subCategoryID")
    sub_category: str = Field(..., alias="subCategory")
    department_id: str = Field(..., alias="departmentID")
    department: str = Field(..., alias="department")
    catalog_id: str = Field(..., alias="catalogID")
    store_id: str = Field(..., alias="storeID")
    store: str = Field(..., alias="store")
    category: str = Field(..., alias="category")
    category_id: str = Field(..., alias="categoryID")
    color: str = Field(..., alias="color")
    style: str = Field(..., alias="style")
    image_url: str = Field(..., alias="imageURL")
    product_url: str = Field(..., alias="productURL")
    variant_url: str = Field(..., alias="variantURL")

    def to_row(self) -> Row:
        return self.model_dump(by_alias=True)


ROW_MODELS: dict[str, type[SkuProductRow] | None] = {
    "generic": None,
    "sku-product": SkuProductRow,
}
