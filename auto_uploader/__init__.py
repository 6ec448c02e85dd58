"""Auto File Uploader: watch a folder and upload its files into the AEM DAM.

Watches a directory for created, modified or deleted entries and, on a
cron schedule, uploads the files found there into the asset repository.
"""

__version__ = "1.0.0"
__app_name__ = "Auto File Uploader"
