"""Runtime settings read from the environment.

The command-line launcher loads a ``.env`` file first (python-dotenv), so
these can be set there as well.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_DECODER = "FAULT_RESOLVER_DECODER"
ENV_OBJDUMP = "FAULT_RESOLVER_OBJDUMP"
ENV_DECODE_TIMEOUT = "FAULT_RESOLVER_DECODE_TIMEOUT"
ENV_LOG_LEVEL = "FAULT_RESOLVER_LOG_LEVEL"

DECODER_CHOICES = ("auto", "capstone", "objdump")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ResolverConfig:
    decoder: str = "auto"
    objdump_path: str = "objdump"
    decode_timeout: float = 10.0
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ResolverConfig":
        env = os.environ if environ is None else environ
        config = cls()

        decoder = env.get(ENV_DECODER, "").strip().lower()
        if decoder:
            if decoder in DECODER_CHOICES:
                config.decoder = decoder
            else:
                logger.warning("Ignoring %s=%r (expected one of %s)",
                               ENV_DECODER, decoder, ", ".join(DECODER_CHOICES))

        objdump = env.get(ENV_OBJDUMP, "").strip()
        if objdump:
            config.objdump_path = objdump

        timeout = env.get(ENV_DECODE_TIMEOUT, "").strip()
        if timeout:
            try:
                value = float(timeout)
                if value <= 0:
                    raise ValueError(timeout)
                config.decode_timeout = value
            except ValueError:
                logger.warning("Ignoring %s=%r (expected positive seconds)",
                               ENV_DECODE_TIMEOUT, timeout)

        level = env.get(ENV_LOG_LEVEL, "").strip().upper()
        if level:
            if level in LOG_LEVELS:
                config.log_level = level
            else:
                logger.warning("Ignoring %s=%r", ENV_LOG_LEVEL, level)

        return config
