from proshot.engines.raster.processor import LocalRasterProcessor, RembgSegmenter

__all__ = ["LocalRasterProcessor", "RembgSegmenter"]
