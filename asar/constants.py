# Entry flags
FLAG_NONE = 0
FLAG_DIR = 1 << 1
FLAG_EXECUTABLE = 1 << 2
FLAG_UNPACKED = 1 << 3
FLAG_MASK = FLAG_DIR | FLAG_EXECUTABLE | FLAG_UNPACKED

# Offset assigned to unpacked entries; never used to read the data section
UNPACKED_OFFSET = -1

# Record framing
RECORD_ALIGNMENT = 4
MAX_RECORD_SIZE = 128 * 1024 * 1024  # 128 MiB safety bound on declared lengths

# Streaming copy granularity
COPY_CHUNK_SIZE = 1_048_576  # 1 MiB

# Sibling directory holding unpacked file contents
UNPACKED_DIR_SUFFIX = ".unpacked"

# Argon2id defaults for password based content encryption
ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4

# Bounds accepted when reading KDF parameters from an archive header
ARGON_MAX_TIME_COST = 16
ARGON_MAX_MEMORY_COST_KIB = 1024 * 1024  # 1 GiB
ARGON_MAX_PARALLELISM = 64
