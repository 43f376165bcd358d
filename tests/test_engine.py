"""
End-to-end tests: httpx clients talking to MockPostgrest through MockTransport.
"""

import asyncio

import httpx
import pytest

from supamock import FunctionResponse, MockTransport
from supamock.config import MockSettings

BASE_URL = "http://supamock.test"
OBJECT_ACCEPT = {"Accept": "application/vnd.pgrst.object+json"}
JSON_ACCEPT = {"Accept": "application/json"}


def _ids(response):
    return [row["id"] for row in response.json()]


@pytest.fixture
def maybe_single_client(sample_posts):
    """Client for a backend that maps Accept: application/json to maybeSingle."""
    settings = MockSettings(_env_file=None, maybe_single_accept="application/json")
    transport = MockTransport(settings=settings, tables={"public.posts": sample_posts})
    with httpx.Client(transport=transport, base_url=BASE_URL) as client:
        yield client


class TestSelect:
    def test_insert_then_filter_order_limit(self, client):
        created = client.post("/rest/v1/posts", json=[{"id": 1, "title": "A"}, {"id": 2, "title": "B"}])
        assert created.status_code == 201

        response = client.get("/rest/v1/posts", params={"id": "eq.2"})
        assert response.status_code == 200
        assert response.json() == [{"id": 2, "title": "B"}]

        response = client.get("/rest/v1/posts", params={"order": "id.desc", "limit": "1"})
        assert response.json() == [{"id": 2, "title": "B"}]

    def test_response_headers(self, client, seeded):
        response = client.get("/rest/v1/posts")
        assert response.headers["content-profile"] == "public.posts"
        assert response.headers["content-type"].startswith("application/json")
        assert "content-range" not in response.headers

    def test_missing_table_is_empty(self, client):
        response = client.get("/rest/v1/nothing")
        assert response.status_code == 200
        assert response.json() == []

    def test_projection_and_embedded_filters(self, client, seeded):
        response = client.get(
            "/rest/v1/posts",
            params={
                "select": "id,title,comments(content)",
                "comments.content": "like.great*",
                "views": "is.null",
            },
        )
        assert response.json() == [
            {"id": 3, "title": "Draft", "comments": [{"content": "great idea"}, {"content": "great start"}]}
        ]

    def test_logic_filters(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"or": "(id.eq.1,tags.cs.{tech})", "order": "id.desc"})
        assert _ids(response) == [2, 1]

    def test_repeated_filters_are_anded(self, client, seeded):
        response = client.get("/rest/v1/posts", params=[("id", "gt.1"), ("id", "lt.3")])
        assert _ids(response) == [2]

    def test_range_header(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"order": "id"}, headers={"Range": "1-2"})
        assert _ids(response) == [2, 3]

    def test_range_param(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"order": "id", "range": "0-1"})
        assert response.status_code == 200
        assert _ids(response) == [1, 2]

    def test_referenced_table_range_param(self, client, seeded):
        response = client.get(
            "/rest/v1/posts",
            params={"select": "id,comments(id)", "order": "id", "comments.range": "1-2"},
        )
        assert response.status_code == 200
        assert response.json() == [
            {"id": 1, "comments": [{"id": 2}]},
            {"id": 2, "comments": []},
            {"id": 3, "comments": [{"id": 4}, {"id": 5}]},
        ]

    def test_reversed_range_param_is_400(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"range": "3-1"})
        assert response.status_code == 400
        assert response.json()["code"] == "PGRST100"

    def test_profile_header_selects_schema(self, client, engine):
        engine.store["archive.posts"] = [{"id": 99}]
        response = client.get("/rest/v1/posts", headers={"Accept-Profile": "archive"})
        assert _ids(response) == [99]
        assert response.headers["content-profile"] == "archive.posts"

    def test_does_not_mutate_store(self, client, seeded):
        client.get("/rest/v1/posts", params={"select": "id,comments(id)", "comments.limit": "1"})
        assert len(seeded.store["public.posts"][0]["comments"]) == 2

    def test_unknown_operator_is_400(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"id": "approx.1"})
        assert response.status_code == 400
        assert response.json()["code"] == "PGRST100"

    def test_missing_version_marker_is_400(self, client):
        response = client.get("/rest/posts")
        assert response.status_code == 400


class TestCount:
    def test_exact_count_ignores_limit(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"limit": "1"}, headers={"Prefer": "count=exact"})
        assert len(response.json()) == 1
        assert response.headers["content-range"] == "0-1/3"
        assert response.headers["preference-applied"] == "count=exact"

    def test_count_reports_offset(self, client, seeded):
        response = client.get(
            "/rest/v1/posts",
            params={"views": "not.is.null", "offset": "1", "limit": "5"},
            headers={"Prefer": "count=planned"},
        )
        assert response.headers["content-range"] == "1-2/2"
        assert response.headers["preference-applied"] == "count=planned"

    def test_head_returns_headers_only(self, client, seeded):
        response = client.head("/rest/v1/posts", params={"id": "gt.1"}, headers={"Prefer": "count=exact"})
        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["content-range"] == "0-2/2"


class TestShape:
    def test_single(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"id": "eq.1", "select": "id"}, headers=OBJECT_ACCEPT)
        assert response.json() == {"id": 1}

    def test_single_with_many_rows_is_406(self, client, seeded):
        response = client.get("/rest/v1/posts", headers=OBJECT_ACCEPT)
        assert response.status_code == 406
        body = response.json()
        assert body["code"] == "PGRST116"
        assert body["message"] == "3 rows were found for single query"

    def test_single_with_no_rows_is_406(self, client, seeded):
        response = client.get("/rest/v1/posts", params={"id": "eq.42"}, headers=OBJECT_ACCEPT)
        assert response.status_code == 406

    def test_maybe_single(self, maybe_single_client):
        none = maybe_single_client.get("/rest/v1/posts", params={"id": "eq.42"}, headers=JSON_ACCEPT)
        assert none.status_code == 200
        assert none.json() is None

        one = maybe_single_client.get("/rest/v1/posts", params={"id": "eq.2", "select": "id"}, headers=JSON_ACCEPT)
        assert one.json() == {"id": 2}

    def test_maybe_single_with_many_rows_is_406(self, maybe_single_client):
        response = maybe_single_client.get("/rest/v1/posts", headers=JSON_ACCEPT)
        assert response.status_code == 406
        assert response.json()["message"] == "3 rows were found for maybeSingle query"

    def test_plain_json_accept_returns_list(self, settings, sample_posts):
        # Headers postgrest-py sends on every request
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        transport = MockTransport(settings=settings, tables={"public.posts": sample_posts})
        with httpx.Client(transport=transport, base_url=BASE_URL, headers=headers) as client:
            response = client.get("/rest/v1/posts", params={"select": "id", "order": "id"})
            empty = client.get("/rest/v1/posts", params={"id": "eq.42"})

        assert response.status_code == 200
        assert response.json() == [{"id": 1}, {"id": 2}, {"id": 3}]
        assert empty.json() == []


class TestInsert:
    def test_returns_created_rows(self, client):
        response = client.post("/rest/v1/posts", json={"id": 1, "title": "A"})
        assert response.status_code == 201
        assert response.json() == [{"id": 1, "title": "A"}]

    def test_select_projects_result(self, client):
        response = client.post("/rest/v1/posts", params={"select": "id"}, json={"id": 1, "title": "A"})
        assert response.json() == [{"id": 1}]

    def test_single_shape_after_insert(self, client):
        response = client.post("/rest/v1/posts", json={"id": 1, "title": "A"}, headers=OBJECT_ACCEPT)
        assert response.status_code == 201
        assert response.json() == {"id": 1, "title": "A"}

    def test_return_minimal(self, client, engine):
        response = client.post("/rest/v1/posts", json={"id": 1}, headers={"Prefer": "return=minimal"})
        assert response.status_code == 201
        assert response.content == b""
        assert engine.store["public.posts"] == [{"id": 1}]

    def test_write_profile_header(self, client, engine):
        client.post("/rest/v1/posts", json={"id": 1}, headers={"Content-Profile": "archive"})
        assert engine.store["archive.posts"] == [{"id": 1}]
        assert "public.posts" not in engine.store

    def test_missing_body_is_400(self, client):
        response = client.post("/rest/v1/posts")
        assert response.status_code == 400
        assert response.json()["code"] == "PGRST102"

    def test_invalid_json_is_400(self, client):
        response = client.post("/rest/v1/posts", content=b"{nope", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid JSON body"

    def test_response_is_detached_from_store(self, client, engine):
        client.post("/rest/v1/posts", json={"id": 1, "tags": ["a"]}, params={"select": "id"})
        assert engine.store["public.posts"] == [{"id": 1, "tags": ["a"]}]


class TestUpsert:
    def test_merge_duplicates(self, client, engine):
        client.post("/rest/v1/posts", json={"id": 1, "title": "A", "views": 3})

        response = client.post(
            "/rest/v1/posts",
            json={"id": 1, "title": "A2"},
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )

        assert response.status_code == 201
        assert response.json() == [{"id": 1, "title": "A2", "views": 3}]
        assert engine.store["public.posts"] == [{"id": 1, "title": "A2", "views": 3}]

    def test_ignore_duplicates(self, client, engine):
        client.post("/rest/v1/posts", json={"id": 1, "title": "A"})
        client.post(
            "/rest/v1/posts",
            params={"on_conflict": "id"},
            json=[{"id": 1, "title": "B"}, {"id": 2, "title": "C"}],
            headers={"Prefer": "resolution=ignore-duplicates"},
        )
        assert engine.store["public.posts"] == [{"id": 1, "title": "A"}, {"id": 2, "title": "C"}]


class TestUpdate:
    def test_updates_matching_rows(self, client, seeded):
        response = client.patch("/rest/v1/posts", params={"id": "eq.1", "select": "id,title"}, json={"title": "Edited"})
        assert response.status_code == 200
        assert response.json() == [{"id": 1, "title": "Edited"}]
        assert seeded.store["public.posts"][0]["title"] == "Edited"

    def test_no_match_is_404(self, client, seeded):
        response = client.patch("/rest/v1/posts", params={"id": "eq.42"}, json={"title": "x"})
        assert response.status_code == 404

    def test_filter_required(self, client, seeded):
        response = client.patch("/rest/v1/posts", json={"title": "x"})
        assert response.status_code == 400
        assert response.json()["code"] == "PGRST102"
        assert [row["title"] for row in seeded.store["public.posts"]] == ["First post", "Second post", "Draft"]

    def test_referenced_table_filter_does_not_count(self, client, seeded):
        response = client.patch("/rest/v1/posts", params={"comments.likes": "gt.4"}, json={"title": "x"})
        assert response.status_code == 400
        assert "x" not in [row["title"] for row in seeded.store["public.posts"]]

    def test_return_minimal_is_204(self, client, seeded):
        response = client.patch(
            "/rest/v1/posts", params={"id": "eq.1"}, json={"views": 1}, headers={"Prefer": "return=minimal"}
        )
        assert response.status_code == 204
        assert response.content == b""


class TestDelete:
    def test_removes_matching_rows(self, client, seeded):
        response = client.delete("/rest/v1/posts", params={"views": "is.null", "select": "id"})
        assert response.status_code == 200
        assert response.json() == [{"id": 3}]
        assert [row["id"] for row in seeded.store["public.posts"]] == [1, 2]

    def test_no_match_is_empty_success(self, client, seeded):
        response = client.delete("/rest/v1/posts", params={"id": "eq.42"})
        assert response.status_code == 200
        assert response.json() == []

    def test_filter_required(self, client, seeded):
        response = client.delete("/rest/v1/posts")
        assert response.status_code == 400
        assert len(seeded.store["public.posts"]) == 3


class TestRpc:
    def test_post_params(self, client, transport):
        transport.register_rpc_function("add", lambda params, store: params["a"] + params["b"])
        response = client.post("/rest/v1/rpc/add", json={"a": 2, "b": 3})
        assert response.status_code == 200
        assert response.json() == 5

    def test_get_params_from_query(self, client, transport):
        transport.register_rpc_function("echo", lambda params, store: params)
        response = client.get("/rest/v1/rpc/echo", params={"name": "Ada"})
        assert response.json() == {"name": "Ada"}

    def test_handler_writes_store(self, client, transport):
        def create_user(params, store):
            store.setdefault("public.users", []).append({"id": 1, "name": params["name"]})
            return {"success": True}

        transport.register_rpc_function("create_user", create_user)
        client.post("/rest/v1/rpc/create_user", json={"name": "Grace"})

        assert client.get("/rest/v1/users").json() == [{"id": 1, "name": "Grace"}]

    def test_row_results_go_through_pipeline(self, client, seeded):
        seeded.register_rpc_function("all_posts", lambda params, store: store["public.posts"])

        response = client.post(
            "/rest/v1/rpc/all_posts",
            params={"views": "gte.100", "order": "id.desc", "select": "id"},
            headers={"Prefer": "count=exact"},
        )

        assert response.json() == [{"id": 2}, {"id": 1}]
        assert response.headers["content-range"] == "0-2/2"
        assert len(seeded.store["public.posts"][0]) > 1

    def test_unknown_function_is_404(self, client):
        response = client.post("/rest/v1/rpc/missing", json={})
        assert response.status_code == 404
        assert response.json()["message"] == "RPC function not found"

    def test_handler_failure_is_500(self, client, transport):
        transport.register_rpc_function("boom", lambda params, store: {}["missing"])
        response = client.post("/rest/v1/rpc/boom", json={})
        assert response.status_code == 500
        assert response.json()["code"] == "P0001"

    def test_head(self, client, transport):
        calls = []
        transport.register_rpc_function("ping", lambda params, store: calls.append(params))
        response = client.head("/rest/v1/rpc/ping", params={"x": "1"})
        assert response.status_code == 200
        assert calls == [{"x": "1"}]


class TestEdgeFunctions:
    def test_json_round_trip(self, client, transport):
        transport.register_edge_function(
            "greet", lambda body, query_params, method, store: {"message": f"Hello, {body['name']}!"}
        )
        response = client.post("/functions/v1/greet", json={"name": "Ada"})
        assert response.status_code == 200
        assert response.json() == {"message": "Hello, Ada!"}

    def test_status_headers_and_text(self, client, transport):
        def handler(body, query_params, method, store):
            return FunctionResponse(data=f"{method} {query_params['q']} {body}", status=202, headers={"X-Trace": "t1"})

        transport.register_edge_function("echo", handler)
        response = client.put("/functions/v1/echo", params={"q": "x"}, content="hi", headers={"Content-Type": "text/plain"})

        assert response.status_code == 202
        assert response.text == "PUT x hi"
        assert response.headers["x-trace"] == "t1"
        assert response.headers["content-type"].startswith("text/plain")

    def test_binary(self, client, transport):
        transport.register_edge_function("blob", lambda body, query_params, method, store: body[::-1])
        response = client.post("/functions/v1/blob", content=b"\x01\x02")
        assert response.content == b"\x02\x01"
        assert response.headers["content-type"] == "application/octet-stream"

    def test_reads_store(self, client, seeded):
        seeded.register_edge_function(
            "count_posts", lambda body, query_params, method, store: {"count": len(store["public.posts"])}
        )
        assert client.get("/functions/v1/count_posts").json() == {"count": 3}

    def test_unknown_function_is_404(self, client):
        response = client.post("/functions/v1/missing", json={})
        assert response.status_code == 404


class TestTransport:
    def test_async_client(self, transport):
        async def scenario():
            async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
                await client.post("/rest/v1/posts", json=[{"id": 1}, {"id": 2}])
                return await client.get("/rest/v1/posts", params={"id": "eq.2"})

        response = asyncio.run(scenario())
        assert response.json() == [{"id": 2}]

    def test_engine_kwargs(self, settings):
        transport = MockTransport(settings=settings, tables={"public.posts": [{"id": 1}]})
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            assert client.get("/rest/v1/posts").json() == [{"id": 1}]

    def test_reset(self, client, transport):
        transport.register_rpc_function("f", lambda params, store: 1)
        transport.register_edge_function("g", lambda body, query_params, method, store: 1)
        client.post("/rest/v1/posts", json={"id": 1})

        transport.reset()

        assert len(transport.store) == 0
        assert client.post("/rest/v1/rpc/f", json={}).status_code == 404
        assert client.post("/functions/v1/g").status_code == 404

    def test_raise_for_status(self, client):
        response = client.get("/rest/v1/posts", params={"id": "nope.1"})
        with pytest.raises(httpx.HTTPStatusError):
            response.raise_for_status()
