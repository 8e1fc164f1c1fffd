"""Module defining various global constants."""

# cloudtree version
VERSION = "1.0.0"

# Identifier of the container used when none is specified explicitly.
DEFAULT_CONTAINER = "Default"

# Suffix of the placeholder files that stand in for evicted (not downloaded) files.
# A placeholder for "report.pdf" is stored next to it as ".report.pdf.cloudtree".
PLACEHOLDER_SUFFIX = ".cloudtree"

# Suffix of temporary files used for atomic writes. These are never reported as
# entries of the tree.
TEMP_SUFFIX = ".cloudtree-tmp"
