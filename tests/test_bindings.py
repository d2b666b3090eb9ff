"""
Tests for the three wire bindings (REST / GraphQL / JSON-RPC) on the inventory service.
"""

import pytest


class TestRestBinding:
    async def test_availability_uses_camel_case(self, inventory_client, catalog):
        response = await inventory_client.get("/api/stock/availability/SKU-001")

        assert response.status_code == 200
        body = response.json()
        assert body["availableQuantity"] == 130
        assert body["reservedQuantity"] == 20
        assert body["isAvailable"] is True
        assert body["productName"] == "Cordless Drill"

    async def test_absent_fields_are_omitted(self, inventory_client):
        response = await inventory_client.get("/api/stock/availability/NOPE")

        body = response.json()
        assert body["status"] == "NOT_FOUND"
        assert "productName" not in body
        assert "warehouseCode" not in body

    async def test_reserve_returns_201_with_location(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/api/stock/reservations",
            json={"sku": "SKU-001", "orderId": "ORD-1", "quantity": 5},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "CONFIRMED"
        assert response.headers["location"] == (
            f"/api/stock/reservations/{body['reservationId']}"
        )
        assert "customerId" not in body

    async def test_reserve_rule_violation_returns_409(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/api/stock/reservations",
            json={"sku": "SKU-001", "orderId": "ORD-1", "quantity": 500},
        )

        assert response.status_code == 409
        assert response.json()["status"] == "FAILED"

    async def test_malformed_request_is_rejected(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/api/stock/reservations",
            json={"sku": "SKU-001", "orderId": "ORD-1", "quantity": 0},
        )

        assert response.status_code == 422

    async def test_cancel_reservation(self, inventory_client, catalog):
        created = await inventory_client.post(
            "/api/stock/reservations",
            json={"sku": "SKU-001", "orderId": "ORD-1", "quantity": 5},
        )
        reservation_id = created.json()["reservationId"]

        response = await inventory_client.delete(f"/api/stock/reservations/{reservation_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

    async def test_threshold_bounds_are_validated(self, inventory_client, catalog):
        response = await inventory_client.put(
            "/api/stock/thresholds/SKU-001",
            json={"minThreshold": 50, "maxThreshold": 10},
        )

        assert response.status_code == 422

    async def test_update_threshold(self, inventory_client, catalog):
        response = await inventory_client.put(
            "/api/stock/thresholds/SKU-001",
            json={"minThreshold": 5, "maxThreshold": 50, "warehouseCode": "WH-A"},
        )

        body = response.json()
        assert body["success"] is True
        assert body["updatedRows"] == 1

    async def test_search_query_parameters(self, inventory_client, catalog):
        response = await inventory_client.get(
            "/api/stock/search",
            params={"sku": "SKU", "sortBy": "quantity", "sortDirection": "DESC", "size": 1},
        )

        body = response.json()
        assert [item["warehouseCode"] for item in body["items"]] == ["WH-A"]
        assert body["pagination"]["totalElements"] == 2
        assert body["pagination"]["hasNext"] is True

    async def test_discontinue_uses_query_parameters(self, inventory_client, catalog):
        response = await inventory_client.delete(
            "/api/stock/products/SKU-001",
            params={"reason": "End of line", "disposition": "RETURN", "discontinuedBy": "ops"},
        )

        body = response.json()
        assert body["success"] is True
        assert body["stockDisposition"] == "RETURN"
        assert body["discontinuedBy"] == "ops"

    async def test_trace_id_header_is_echoed(self, inventory_client):
        response = await inventory_client.get("/health", headers={"x-trace-id": "abc123"})

        assert response.status_code == 200
        assert response.headers["x-trace-id"] == "abc123"


def _rpc(method: str, params: dict | None = None, request_id: str = "1") -> dict:
    envelope = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        envelope["params"] = params
    return envelope


class TestRpcBinding:
    async def test_bulk_stock_update(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/rpc",
            json=_rpc(
                "bulkStockUpdate",
                {
                    "warehouseCode": "WH-B",
                    "items": [{"sku": "SKU-001", "quantity": 5, "operation": "ADD"}],
                },
            ),
        )

        body = response.json()
        assert body["id"] == "1"
        assert body["result"]["successCount"] == 1
        assert body["result"]["results"][0]["newQuantity"] == 55

    async def test_sku_sits_beside_request_fields(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/rpc",
            json=_rpc("adjustPrice", {"sku": "SKU-001", "newPrice": 21.0}),
        )

        result = response.json()["result"]
        assert result["sku"] == "SKU-001"
        assert result["newPrice"] == 21.0

    async def test_unknown_method(self, inventory_client):
        response = await inventory_client.post("/rpc", json=_rpc("dropTables"))

        assert response.json()["error"]["code"] == -32601

    async def test_invalid_params(self, inventory_client):
        response = await inventory_client.post(
            "/rpc", json=_rpc("reserveStock", {"sku": "SKU-001", "quantity": -1})
        )

        error = response.json()["error"]
        assert error["code"] == -32602
        assert error["data"]

    async def test_parse_error(self, inventory_client):
        response = await inventory_client.post(
            "/rpc", content=b"{not json", headers={"content-type": "application/json"}
        )

        body = response.json()
        assert body["error"]["code"] == -32700
        assert body["id"] is None

    @pytest.mark.parametrize(
        "envelope",
        [
            {"jsonrpc": "1.0", "method": "checkAvailability", "id": 7},
            {"jsonrpc": "2.0", "id": 7},
            ["not", "an", "object"],
        ],
    )
    async def test_invalid_envelope(self, inventory_client, envelope):
        response = await inventory_client.post("/rpc", json=envelope)

        assert response.json()["error"]["code"] == -32600


class TestGraphQLBinding:
    async def test_product_details_selection(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/graphql",
            json={
                "query": """
                    query Details($sku: String!) {
                      productDetails(sku: $sku) {
                        sku productName stockCount availableCount warehouseCode aisle
                      }
                    }
                """,
                "variables": {"sku": "SKU-001"},
            },
        )

        assert response.status_code == 200
        details = response.json()["data"]["productDetails"]
        assert details == {
            "sku": "SKU-001",
            "productName": "Cordless Drill",
            "stockCount": 150,
            "availableCount": 130,
            "warehouseCode": "WH-A",
            "aisle": "A1",
        }

    async def test_null_fields_are_pruned(self, inventory_client):
        response = await inventory_client.post(
            "/graphql",
            json={"query": '{ stockAvailability(sku: "NOPE") { sku status productName } }'},
        )

        assert response.json()["data"]["stockAvailability"] == {
            "sku": "NOPE",
            "status": "NOT_FOUND",
        }

    async def test_reserve_mutation(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/graphql",
            json={
                "query": """
                    mutation Reserve($input: ReservationRequest!) {
                      reserveStock(input: $input) { reservationId status warehouseCode }
                    }
                """,
                "variables": {"input": {"sku": "SKU-001", "orderId": "ORD-1", "quantity": 5}},
            },
        )

        reservation = response.json()["data"]["reserveStock"]
        assert reservation["status"] == "CONFIRMED"
        assert reservation["warehouseCode"] == "WH-A"
        assert (await catalog.get("SKU-001", "WH-A")).reserved_quantity == 25

    async def test_nested_search_result(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/graphql",
            json={
                "query": """
                    {
                      searchStock(filter: {warehouseCode: "WH-B"}) {
                        items { sku warehouseCode }
                        pagination { totalElements totalPages }
                      }
                    }
                """
            },
        )

        result = response.json()["data"]["searchStock"]
        assert result["items"] == [{"sku": "SKU-001", "warehouseCode": "WH-B"}]
        assert result["pagination"] == {"totalElements": 1, "totalPages": 1}

    async def test_unknown_field_is_rejected(self, inventory_client):
        response = await inventory_client.post(
            "/graphql", json={"query": '{ stockAvailability(sku: "X") { colour } }'}
        )

        assert response.status_code == 400
        assert "data" not in response.json()
        assert response.json()["errors"]

    async def test_invalid_input_is_reported_as_error(self, inventory_client, catalog):
        response = await inventory_client.post(
            "/graphql",
            json={
                "query": """
                    mutation {
                      updateStockThreshold(
                        sku: "SKU-001", input: {minThreshold: 50, maxThreshold: 10}
                      ) { success }
                    }
                """
            },
        )

        assert response.status_code == 400
        assert response.json()["errors"]
        assert (await catalog.get("SKU-001", "WH-A")).min_threshold == 10
