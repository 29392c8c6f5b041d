from nodehog.conductor.helpers import HelperManager
from nodehog.conductor.recorder import ConfigMapStateRecorder, FileStateRecorder, MemoryStateRecorder, StateRecorder
from nodehog.conductor.recovery import recover
from nodehog.conductor.sequencer import ExperimentSequencer
from nodehog.conductor.targets import TargetResolver

__all__ = [
    "ConfigMapStateRecorder",
    "ExperimentSequencer",
    "FileStateRecorder",
    "HelperManager",
    "MemoryStateRecorder",
    "StateRecorder",
    "TargetResolver",
    "recover",
]
