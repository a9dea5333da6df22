import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment must be in place before any import that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
# No Redis in unit tests; the runtime falls back to the in-memory registry
os.environ.setdefault("REDIS_URL", "")
# Host-only cookies so the test client's jar accepts them
os.environ.setdefault("DOMAIN", "")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from todoauth.service.signer import KeyPair  # noqa: E402

# One set of key pairs per test session keeps runtime resets cheap
for _name in ("access", "refresh", "session"):
    _private_b64, _public_b64 = KeyPair.generate(_name).encoded()
    os.environ.setdefault(f"{_name.upper()}_TOKEN_PRIVATE_KEY", _private_b64)
    os.environ.setdefault(f"{_name.upper()}_TOKEN_PUBLIC_KEY", _public_b64)

from todoauth.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
