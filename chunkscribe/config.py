import os
import logging
from typing import Dict, Optional, Any, Union
from pathlib import Path

logger = logging.getLogger(__name__)

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8001
DEFAULT_CHUNK_DURATION = 300
DEFAULT_TEMP_DIR = "/tmp/chunkscribe"
DEFAULT_SHERPA_MODEL_DIR = "/models/sherpa-onnx"
DEFAULT_AUDIO_MODEL = "gpt-4o-audio-preview"
DEFAULT_TEXT_MODEL = "gpt-4o-mini"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _sample_minutes(raw: str) -> Union[str, float]:
    raw = raw.strip().lower()
    if raw in ("", "all"):
        return "all"
    return float(raw)


class Config:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        self.host = os.environ.get("HOST", DEFAULT_HOST)
        self.port = int(os.environ.get("PORT", DEFAULT_PORT))
        self.debug = os.environ.get("DEBUG", "0") == "1"
        self.temp_dir = os.environ.get("TEMP_DIR", DEFAULT_TEMP_DIR)
        self.chunk_duration = float(os.environ.get("CHUNK_DURATION", DEFAULT_CHUNK_DURATION))

        # Concurrency
        self.concurrency_flash = int(os.environ.get("CONCURRENCY_FLASH", "5"))
        self.concurrency_pro = int(os.environ.get("CONCURRENCY_PRO", "2"))
        self.local_concurrency = int(os.environ.get("LOCAL_CONCURRENCY", "1"))

        # Engines and models
        self.transcription_engine = os.environ.get("TRANSCRIPTION_ENGINE", "openai").lower()
        self.openai_api_key = os.environ.get("OPENAI_API_KEY")
        self.openai_base_url = os.environ.get("OPENAI_BASE_URL") or None
        self.transcription_model = os.environ.get("TRANSCRIPTION_MODEL", DEFAULT_TRANSCRIPTION_MODEL)
        self.refinement_model = os.environ.get("REFINEMENT_MODEL", DEFAULT_AUDIO_MODEL)
        self.translation_model = os.environ.get("TRANSLATION_MODEL", DEFAULT_TEXT_MODEL)
        self.glossary_model = os.environ.get("GLOSSARY_MODEL", DEFAULT_AUDIO_MODEL)
        self.speaker_model = os.environ.get("SPEAKER_MODEL", DEFAULT_AUDIO_MODEL)
        self.sherpa_model_dir = os.environ.get("SHERPA_MODEL_DIR", DEFAULT_SHERPA_MODEL_DIR)
        self.sherpa_provider = os.environ.get("SHERPA_PROVIDER", "cuda")
        self.request_timeout = float(os.environ.get("REQUEST_TIMEOUT", "600"))

        # Pipeline behaviour
        self.target_language = os.environ.get("TARGET_LANGUAGE", "zh-CN")
        self.genre = os.environ.get("GENRE", "general")
        self.enable_auto_glossary = _env_bool("ENABLE_AUTO_GLOSSARY", "true")
        self.glossary_sample_minutes = _sample_minutes(os.environ.get("GLOSSARY_SAMPLE_MINUTES", "all"))
        self.enable_diarization = _env_bool("ENABLE_DIARIZATION", "false")
        self.enable_speaker_pre_analysis = _env_bool("ENABLE_SPEAKER_PRE_ANALYSIS", "true")
        self.translation_batch_size = int(os.environ.get("TRANSLATION_BATCH_SIZE", "20"))
        self.artifacts_dir = os.environ.get("ARTIFACTS_DIR", "").strip() or None

        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> Optional[str]:
        return self.openai_api_key

    def as_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "chunk_duration": self.chunk_duration,
            "concurrency_flash": self.concurrency_flash,
            "concurrency_pro": self.concurrency_pro,
            "local_concurrency": self.local_concurrency,
            "transcription_engine": self.transcription_engine,
            "has_api_key": self.openai_api_key is not None,
            "refinement_model": self.refinement_model,
            "translation_model": self.translation_model,
            "target_language": self.target_language,
            "enable_auto_glossary": self.enable_auto_glossary,
            "glossary_sample_minutes": self.glossary_sample_minutes,
            "enable_diarization": self.enable_diarization,
            "artifacts": self.artifacts_dir is not None,
        }


config = Config()


def get_config() -> Config:
    return config


def create_transcription_adapter(cfg: Config):
    """Create the transcription adapter based on TRANSCRIPTION_ENGINE.

    Uses lazy imports so unused frameworks are never loaded.
    """
    engine = cfg.transcription_engine

    if engine == "openai":
        from chunkscribe.adapters.openai.transcription import OpenAITranscriptionAdapter
        transcription = OpenAITranscriptionAdapter(
            api_key=cfg.openai_api_key,
            base_url=cfg.openai_base_url,
            model=cfg.transcription_model,
            timeout=cfg.request_timeout,
        )
    elif engine == "sherpa":
        from chunkscribe.adapters.sherpa import SherpaTranscriptionAdapter
        transcription = SherpaTranscriptionAdapter(cfg.sherpa_model_dir, provider=cfg.sherpa_provider)
    else:
        raise ValueError(f"Unknown TRANSCRIPTION_ENGINE: {engine!r}. Valid options: openai, sherpa")

    logger.info(f"Transcription adapter: engine={engine}, {type(transcription).__name__}")
    return transcription


def create_generation_adapter(cfg: Config):
    from chunkscribe.adapters.openai.generation import OpenAIGenerationAdapter
    return OpenAIGenerationAdapter(
        api_key=cfg.openai_api_key,
        base_url=cfg.openai_base_url,
        timeout=cfg.request_timeout,
    )


def create_audio_adapter():
    """Create the audio processing and segmentation adapter (always FFmpeg)."""
    from chunkscribe.adapters.ffmpeg.audio import FFmpegAudioAdapter
    return FFmpegAudioAdapter()


def create_infra_adapters(cfg: Config):
    """Create progress and artifact adapters."""
    from chunkscribe.adapters.local.log_progress import LogProgressAdapter
    from chunkscribe.adapters.local.file_artifacts import FileArtifactSink

    adapters = {
        "progress": LogProgressAdapter(),
        "artifacts": FileArtifactSink(cfg.artifacts_dir) if cfg.artifacts_dir else None,
    }
    logger.info(
        "Infra adapters: "
        + ", ".join(type(v).__name__ for v in adapters.values() if v is not None)
    )
    return adapters


def create_use_case(cfg: Config):
    """Wire the subtitle use case from configuration."""
    from chunkscribe.use_cases.generate_subtitles import GenerateSubtitlesUseCase

    audio = create_audio_adapter()
    infra = create_infra_adapters(cfg)
    return GenerateSubtitlesUseCase(
        audio=audio,
        segmenter=audio,
        transcription=create_transcription_adapter(cfg),
        generation=create_generation_adapter(cfg),
        progress=infra["progress"],
        artifacts=infra["artifacts"],
    )
