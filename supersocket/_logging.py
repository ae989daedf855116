# =============================================================================
# SuperSocket -- Package Logger
# =============================================================================

import logging

logger = logging.getLogger("supersocket")
