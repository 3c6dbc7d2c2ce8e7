#!/usr/bin/env python3
"""Mock GraphQL origin for running the edge server locally.

Runs on port 4243 and answers the ``posts`` query the feed and sitemap use,
plus stub ``/login`` and ``/logout`` endpoints so the proxy paths can be
exercised. No real origin or credentials needed.

Usage:
    python3 demo/mock_origin.py
    GRAPHQL_ORIGIN=http://127.0.0.1:4243 writing-edge
"""

import re
from datetime import datetime, timedelta, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

app = FastAPI(title="Mock GraphQL Origin (edge server demo)")

_LIMIT = re.compile(r"posts\s*\(\s*limit:\s*(\d+)")

SUMMARIES = [
    "A short note about *nothing* in particular.",
    "Some thoughts on [static sites](https://example.com) and caching.",
    "Lists:\n\n- one\n- two\n- three",
    "Code: `print('hello')`",
]


def make_posts(limit: int) -> list[dict]:
    """Newest first, one post a day going back from now."""
    now = datetime.now(timezone.utc).replace(microsecond=0)
    posts = []
    for i in range(min(limit, 40)):
        posts.append(
            {
                "id": str(40 - i),
                "title": f"Post number {40 - i}",
                "datetime": (now - timedelta(days=i)).isoformat().replace("+00:00", "Z"),
                "summary": SUMMARIES[i % len(SUMMARIES)],
            }
        )
    return posts


@app.post("/graphql")
async def graphql(request: Request):
    body = await request.json()
    query = body.get("query", "")
    if "__typename" in query and "posts" not in query:
        return JSONResponse({"data": {"__typename": "Query"}})

    match = _LIMIT.search(query)
    if match is None:
        return JSONResponse({"errors": [{"message": "unsupported query"}]}, status_code=400)
    return JSONResponse({"data": {"posts": make_posts(int(match.group(1)))}})


@app.get("/login")
async def login():
    return RedirectResponse("/callback?code=demo", status_code=302)


@app.get("/logout")
async def logout():
    response = RedirectResponse("/", status_code=302)
    response.delete_cookie("session")
    return response


@app.get("/callback")
async def callback():
    response = RedirectResponse("/admin", status_code=302)
    response.set_cookie("session", "demo", httponly=True)
    return response


@app.get("/admin")
async def admin(request: Request):
    return JSONResponse({"admin": True, "session": request.cookies.get("session")})


if __name__ == "__main__":
    print("Mock GraphQL origin running on http://127.0.0.1:4243")
    uvicorn.run(app, host="127.0.0.1", port=4243, log_level="warning")
