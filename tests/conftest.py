import pytest
from pytest_lazy_fixtures import lf
from typing import Generator

from bucketfs import BucketFileSystem
from tests.utils.memory_s3 import MemoryS3Client

# The waiter never sleeps against the in-memory client.
FAST_WAITER = {"Delay": 0, "MaxAttempts": 5}


@pytest.fixture(scope="function")
def client() -> MemoryS3Client:
    return MemoryS3Client(bucket="test")


@pytest.fixture(scope="function")
def fs(client: MemoryS3Client) -> Generator[BucketFileSystem, None, None]:
    """Filesystem over an in-memory bucket with immediate visibility."""
    yield BucketFileSystem(
        "test",
        client=client,
        waiter_config=FAST_WAITER,
        skip_instance_cache=True,
    )


@pytest.fixture(scope="function")
def lagging_client() -> MemoryS3Client:
    return MemoryS3Client(bucket="test", visibility_delay=3)


@pytest.fixture(scope="function")
def lagging_fs(lagging_client: MemoryS3Client) -> Generator[BucketFileSystem, None, None]:
    """Filesystem over a bucket where new objects show up a few lookups late."""
    yield BucketFileSystem(
        "test",
        client=lagging_client,
        waiter_config=FAST_WAITER,
        skip_instance_cache=True,
    )


@pytest.fixture(scope="function")
def raw_fs(client: MemoryS3Client) -> Generator[BucketFileSystem, None, None]:
    yield BucketFileSystem(
        "test",
        client=client,
        raw_mode=True,
        waiter_config=FAST_WAITER,
        skip_instance_cache=True,
    )


FILE_SYSTEMS = [
    lf("fs"),
    lf("lagging_fs"),
]


def put(client: MemoryS3Client, key: str, body: bytes = b"") -> None:
    client.put_object(Bucket=client.bucket, Key=key, Body=body)
    client.calls.clear()
