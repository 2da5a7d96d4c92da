from .service import ConversionWorker
from .models import ConversionRequest, ConvertedAsset, Dimensions, SourceAsset

__all__ = ["ConversionWorker", "ConversionRequest", "ConvertedAsset", "Dimensions", "SourceAsset"]
