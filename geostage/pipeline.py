"""
Immutable chains of dataset transformations.

    pipeline = (
        Pipeline()
        .then("reproject", reproject, target_crs="EPSG:27700")
        .then("clip", clip, region=boundary)
        .then("slope", slope)
    )
    result = pipeline.run(dem)

Each stage receives the previous stage's output and must return a new
dataset; adding a stage returns a new pipeline.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    name: str
    func: Callable[..., Any]
    kwargs: Dict[str, Any] = field(default_factory=dict)

    def __call__(self, dataset: Any) -> Any:
        return self.func(dataset, **self.kwargs)


@dataclass(frozen=True)
class Pipeline:
    stages: Tuple[Stage, ...] = ()

    def then(self, name: str, func: Callable[..., Any], **kwargs: Any) -> "Pipeline":
        """Return a new pipeline with ``func(dataset, **kwargs)`` appended."""
        if any(stage.name == name for stage in self.stages):
            raise ValueError(f"A stage named '{name}' already exists")
        return Pipeline(self.stages + (Stage(name, func, dict(kwargs)),))

    @property
    def names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def _outputs(self, dataset: Any) -> Iterator[Tuple[str, Any]]:
        current = dataset
        for i, stage in enumerate(self.stages, start=1):
            logger.info(f"Stage {i}/{len(self.stages)}: {stage.name}")
            try:
                output = stage(current)
            except Exception as e:
                logger.error(f"Stage '{stage.name}' failed: {e}")
                raise
            if output is current:
                raise ValueError(f"Stage '{stage.name}' returned its input; stages must return a new dataset")
            current = output
            yield stage.name, output

    def trace(self, dataset: Any) -> Dict[str, Any]:
        """Run every stage and return each stage's output, keyed by stage name."""
        return dict(self._outputs(dataset))

    def run(self, dataset: Any) -> Any:
        """Run every stage and return the final output; intermediate results are not kept."""
        if not self.stages:
            return dataset.copy()
        for _, result in self._outputs(dataset):
            pass
        return result

    def __len__(self) -> int:
        return len(self.stages)
