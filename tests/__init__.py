"""
ftldat test suite.

Unit tests for the archive engine (path table, codec, reader, writer,
editor, classic format) and the sandbox (resolver, file handles, package
facade). Disk access is confined to pytest's tmp_path.
"""
