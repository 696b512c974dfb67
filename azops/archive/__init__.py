"""
Archive and restore of directories through Azure Blob Storage.

Modules:
- compress: compress, verify, upload and clean up source paths
- restore: rehydrate, download, verify and extract archived blobs
- tools: 7-Zip and AzCopy command line wrappers
- models: per-path outcome tracking and run manifests
"""
