import pytest

from fakes import FakeAudio, FakeGenerator, FakeProgress, FakeTranscriber


@pytest.fixture
def fake_audio() -> FakeAudio:
    return FakeAudio()


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def progress() -> FakeProgress:
    return FakeProgress()
