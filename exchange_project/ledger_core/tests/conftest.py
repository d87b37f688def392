import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def clear_balance_cache():
    # primary keys are reused between rolled-back tests, cache entries are not
    cache.clear()
    yield
    cache.clear()
