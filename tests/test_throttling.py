import uuid

from starlette.requests import Request

from core.throttling import rate_limiter_manager
from core.validators import issue_access_token


def make_request(path="/v1/bookings", headers=(), client=("10.0.0.7", 5000)):
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": path,
            "query_string": b"",
            "headers": [(k.encode(), v.encode()) for k, v in headers],
            "client": client,
        }
    )


async def test_authenticated_requests_share_one_user_key():
    user_id = uuid.uuid4()
    token = issue_access_token(user_id)

    by_header = make_request(headers=[("authorization", f"Bearer {token}")])
    by_cookie = make_request(
        path="/v1/chat/unread-count",
        headers=[("cookie", f"access_token={token}")],
        client=("10.0.0.8", 6000),
    )

    assert await rate_limiter_manager.user_or_ip(by_header) == f"user:{user_id}"
    assert await rate_limiter_manager.user_or_ip(by_cookie) == f"user:{user_id}"


async def test_bad_or_missing_token_falls_back_to_address():
    forged = make_request(headers=[("authorization", "Bearer not.a.jwt")])
    anonymous = make_request(path="/v1/chat")

    assert await rate_limiter_manager.user_or_ip(forged) == "ip:10.0.0.7:/v1/bookings"
    assert await rate_limiter_manager.user_or_ip(anonymous) == "ip:10.0.0.7:/v1/chat"


async def test_no_client_is_anonymous():
    assert await rate_limiter_manager.user_or_ip(make_request(client=None)) == "anonymous"
