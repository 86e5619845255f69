from asydrop.repository.pathresolver import SafePathResolver
from asydrop.repository.naming import unique_name, unique_folder_name
from asydrop.repository.limits import ExtractionLimits
from asydrop.repository.extractor import ArchiveExtractor
from asydrop.repository.builder import ArchiveBuilder
from asydrop.repository.listing import DirectoryListing, list_directory
from asydrop.repository.upload import UploadPipeline, ResolvedTarget
from asydrop.repository.download import DownloadPipeline, DownloadResult

__all__ = [
	'SafePathResolver',
	'unique_name',
	'unique_folder_name',
	'ExtractionLimits',
	'ArchiveExtractor',
	'ArchiveBuilder',
	'DirectoryListing',
	'list_directory',
	'UploadPipeline',
	'ResolvedTarget',
	'DownloadPipeline',
	'DownloadResult',
]
