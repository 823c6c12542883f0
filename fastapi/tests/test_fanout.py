import pytest

from jobchat.errors import PartialFanoutFailure, TransientIO
from jobchat.utils.fanout import fan_out


async def _ok(value):
    return value


async def _fail(exc):
    raise exc


@pytest.mark.asyncio
async def test_fan_out_returns_every_result():
    results = await fan_out("test", {"alice": _ok(1), "bob": _ok(2)})
    assert results == {"alice": 1, "bob": 2}


@pytest.mark.asyncio
async def test_fan_out_reports_partial_failure_without_hiding_successes():
    with pytest.raises(PartialFanoutFailure) as info:
        await fan_out("test", {"alice": _ok(True), "bob": _fail(RuntimeError("disk full"))})

    assert info.value.results == {"alice": True}
    assert list(info.value.failed) == ["bob"]
    assert info.value.succeeded == ["alice"]
    assert isinstance(info.value.cause, RuntimeError)


@pytest.mark.asyncio
async def test_fan_out_all_transient_is_transient():
    with pytest.raises(TransientIO):
        await fan_out("test", {"alice": _fail(TransientIO("down")), "bob": _fail(TransientIO("down"))})


@pytest.mark.asyncio
async def test_fan_out_all_failed_mixed_is_partial():
    with pytest.raises(PartialFanoutFailure) as info:
        await fan_out("test", {"alice": _fail(TransientIO("down")), "bob": _fail(ValueError("bad"))})
    assert info.value.results == {}
