"""
Shared - GraphQL バインディング (型付き query / mutation ドキュメント)

スキーマ (SDL) は正準 DTO から生成するので、REST / JSON-RPC と
同じフィールド集合が保証される。リゾルバは StockOperations に委譲するだけ。

  POST /graphql  {"query": "...", "variables": {...}, "operationName": "..."}
"""

import logging
from datetime import datetime
from types import NoneType, UnionType
from typing import Any, Callable, Union, get_args, get_origin

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from graphql import GraphQLError, build_schema, graphql
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..contracts import (
    BulkUpdateRequest,
    BulkUpdateResult,
    DamagedReturnRequest,
    DamagedReturnResult,
    DiscontinueRequest,
    DiscontinueResult,
    PriceAdjustmentRequest,
    PriceAdjustmentResult,
    ProductDetails,
    ReservationRequest,
    ReservationResult,
    StockAvailability,
    StockOperations,
    StockSearchRequest,
    StockSearchResult,
    ThresholdRequest,
    ThresholdResult,
    WarehouseStatus,
    to_wire,
)

logger = logging.getLogger(__name__)

_SCALARS = {
    str: "String",
    int: "Int",
    float: "Float",
    bool: "Boolean",
    datetime: "String",
}

INPUT_MODELS = (
    ReservationRequest,
    ThresholdRequest,
    BulkUpdateRequest,
    DamagedReturnRequest,
    PriceAdjustmentRequest,
    DiscontinueRequest,
    StockSearchRequest,
)

OUTPUT_MODELS = (
    StockAvailability,
    ReservationResult,
    ThresholdResult,
    BulkUpdateResult,
    WarehouseStatus,
    ProductDetails,
    DamagedReturnResult,
    PriceAdjustmentResult,
    DiscontinueResult,
    StockSearchResult,
)

ROOT_SDL = """
type Query {
  stockAvailability(sku: String!): StockAvailability!
  productDetails(sku: String!): ProductDetails!
  warehouseStatus(warehouseCode: String!): WarehouseStatus!
  searchStock(filter: StockSearchRequest): StockSearchResult!
}

type Mutation {
  reserveStock(input: ReservationRequest!): ReservationResult!
  cancelReservation(reservationId: String!): ReservationResult!
  updateStockThreshold(sku: String!, input: ThresholdRequest!): ThresholdResult!
  bulkStockUpdate(input: BulkUpdateRequest!): BulkUpdateResult!
  registerDamagedReturn(input: DamagedReturnRequest!): DamagedReturnResult!
  adjustPrice(sku: String!, input: PriceAdjustmentRequest!): PriceAdjustmentResult!
  discontinueProduct(sku: String!, input: DiscontinueRequest!): DiscontinueResult!
}
"""


# ── SDL 生成 ─────────────────────────────────────


def nested_model(annotation: Any) -> type[BaseModel] | None:
    """Optional / list を剥がして、中身が DTO ならそのクラスを返す。"""
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    for arg in get_args(annotation):
        model = nested_model(arg)
        if model is not None:
            return model
    return None


def _type_ref(annotation: Any, required: bool) -> str:
    if get_origin(annotation) in (Union, UnionType):
        inner = next(arg for arg in get_args(annotation) if arg is not NoneType)
        return _type_ref(inner, False)
    if get_origin(annotation) is list:
        text = f"[{_type_ref(get_args(annotation)[0], True)}]"
    elif isinstance(annotation, type) and issubclass(annotation, BaseModel):
        text = annotation.__name__
    else:
        text = _SCALARS[annotation]
    return f"{text}!" if required else text


def _type_definition(model: type[BaseModel], keyword: str, seen: set[str]) -> list[str]:
    if model.__name__ in seen:
        return []
    seen.add(model.__name__)

    lines = [f"{keyword} {model.__name__} {{"]
    nested: list[str] = []
    for name, field in model.model_fields.items():
        required = keyword == "input" and field.is_required()
        lines.append(f"  {field.alias or name}: {_type_ref(field.annotation, required)}")
        child = nested_model(field.annotation)
        if child is not None:
            nested.extend(_type_definition(child, keyword, seen))
    lines.append("}")
    return ["\n".join(lines), *nested]


def build_sdl() -> str:
    seen: set[str] = set()
    definitions: list[str] = []
    for model in INPUT_MODELS:
        definitions.extend(_type_definition(model, "input", seen))
    for model in OUTPUT_MODELS:
        definitions.extend(_type_definition(model, "type", seen))
    return ROOT_SDL + "\n" + "\n\n".join(definitions) + "\n"


# ── リゾルバ ─────────────────────────────────────

RESOLVERS: dict[tuple[str, str], Callable[[StockOperations, dict], Any]] = {
    ("Query", "stockAvailability"): lambda ops, args: ops.check_availability(
        args["sku"]
    ),
    ("Query", "productDetails"): lambda ops, args: ops.fetch_product_details(
        args["sku"]
    ),
    ("Query", "warehouseStatus"): lambda ops, args: ops.get_warehouse_status(
        args["warehouseCode"]
    ),
    ("Query", "searchStock"): lambda ops, args: ops.search_stock(
        StockSearchRequest.model_validate(args.get("filter") or {})
    ),
    ("Mutation", "reserveStock"): lambda ops, args: ops.reserve_stock(
        ReservationRequest.model_validate(args["input"])
    ),
    ("Mutation", "cancelReservation"): lambda ops, args: ops.cancel_reservation(
        args["reservationId"]
    ),
    ("Mutation", "updateStockThreshold"): lambda ops, args: ops.update_threshold(
        args["sku"], ThresholdRequest.model_validate(args["input"])
    ),
    ("Mutation", "bulkStockUpdate"): lambda ops, args: ops.bulk_stock_update(
        BulkUpdateRequest.model_validate(args["input"])
    ),
    ("Mutation", "registerDamagedReturn"): lambda ops, args: ops.register_damaged_return(
        DamagedReturnRequest.model_validate(args["input"])
    ),
    ("Mutation", "adjustPrice"): lambda ops, args: ops.adjust_price(
        args["sku"], PriceAdjustmentRequest.model_validate(args["input"])
    ),
    ("Mutation", "discontinueProduct"): lambda ops, args: ops.discontinue_product(
        args["sku"], DiscontinueRequest.model_validate(args["input"])
    ),
}


def _make_resolver(call: Callable[[StockOperations, dict], Any]):
    async def resolve(_root, info, **args):
        result = await call(info.context["operations"], args)
        return to_wire(result)

    return resolve


def _build_schema():
    schema = build_schema(build_sdl())
    roots = {"Query": schema.query_type, "Mutation": schema.mutation_type}
    for (root, field_name), call in RESOLVERS.items():
        roots[root].fields[field_name].resolve = _make_resolver(call)
    return schema


SCHEMA = _build_schema()


def prune_nulls(value: Any) -> Any:
    """null のフィールドを取り除く (他のバインディングと同じく欠損は省略)。"""
    if isinstance(value, dict):
        return {key: prune_nulls(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [prune_nulls(item) for item in value]
    return value


class GraphQLRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    variables: dict[str, Any] | None = None
    operation_name: str | None = Field(default=None, alias="operationName")


async def execute(ops: StockOperations, request: GraphQLRequest) -> tuple[dict, int]:
    """ドキュメントを実行し、(レスポンスボディ, HTTP ステータス) を返す。"""
    result = await graphql(
        SCHEMA,
        request.query,
        variable_values=request.variables,
        operation_name=request.operation_name,
        context_value={"operations": ops},
    )

    payload: dict[str, Any] = {}
    if result.errors:
        for error in result.errors:
            original = error.original_error
            if original is not None and not isinstance(
                original, (ValidationError, GraphQLError)
            ):
                logger.error(
                    "GraphQL resolver failed: %s", error.message, exc_info=original
                )
        payload["errors"] = [error.formatted for error in result.errors]
    if result.data is not None:
        payload["data"] = prune_nulls(result.data)
    return payload, 200 if result.data is not None else 400


def build_router(get_operations: Callable[..., StockOperations]) -> APIRouter:
    router = APIRouter()

    @router.post("/graphql")
    async def graphql_endpoint(body: GraphQLRequest, ops=Depends(get_operations)):
        """GraphQL ドキュメントを実行する"""
        payload, status_code = await execute(ops, body)
        return JSONResponse(payload, status_code=status_code)

    return router
