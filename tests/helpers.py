import os
import time
import asyncio

import jwt


def make_token(user_id: str, email: str = None, expires_in: int = 3600) -> str:
    """Sign an access token the way Supabase Auth does."""
    now = int(time.time())
    return jwt.encode(
        {
            "sub": str(user_id),
            "email": email,
            "role": "authenticated",
            "aud": "authenticated",
            "iss": f"{os.environ['PUBLIC_SUPABASE_URL']}/auth/v1",
            "iat": now,
            "exp": now + expires_in,
        },
        os.environ["SUPABASE_JWT_SECRET"],
        algorithm="HS256",
    )


async def wait_until(condition, timeout: float = 1.0):
    """Poll `condition` on the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
