# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .session_client import RefreshFailedError, StepUnityClient

__all__ = ["RefreshFailedError", "StepUnityClient"]
