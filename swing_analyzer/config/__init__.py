from .keypoints import (
    BLAZEPOSE_33,
    COCO_17,
    Topology,
    get_topology,
    topology_for_size,
)
from .settings import (
    DEFAULT_CONFIG,
    AnalyzerConfig,
    ExtractionConfig,
    JointHistoryConfig,
    StabilityConfig,
    StabilizationConfig,
    SwingDetectionConfig,
)
