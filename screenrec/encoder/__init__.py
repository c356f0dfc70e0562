"""External encoder control.

This package drives FFmpeg for screen recording:
- arguments: Deterministic command-line construction
- pipe: Block-aligned FIFO carrying live PCM audio
- merge: Post-recording audio merge and output validation
- supervisor: Encoder process state machine
"""

from screenrec.encoder.supervisor import (
    EncoderProcessSupervisor,
    EncoderState,
    FinishResult,
)

__all__ = ["EncoderProcessSupervisor", "EncoderState", "FinishResult"]
