"""
JAX Configuration - MUST be imported before any JAX imports.

This module sets environment variables for JAX configuration including:
- Double precision (NLL sums over many events need float64)
- Persistent compilation cache directory
- Minimum compile time threshold for caching
- GPU memory allocator settings
"""
import os
from pathlib import Path

# --- PRECISION ---
# Event-term sums lose resolution in float32 once the dataset is large
os.environ.setdefault("JAX_ENABLE_X64", "1")

# --- GPU MEMORY ALLOCATOR ---
# Use async allocator to reduce fragmentation (recommended by JAX for large lookup tables)
os.environ.setdefault("TF_GPU_ALLOCATOR", "cuda_malloc_async")

# --- PERSISTENT COMPILATION CACHE ---
# Enables cross-session caching of compiled walk kernels
_JAX_CACHE_DIR = Path.home() / ".cache" / "jax" / "histmcmc_cache"
_JAX_CACHE_DIR.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("JAX_COMPILATION_CACHE_DIR", str(_JAX_CACHE_DIR))
os.environ.setdefault("JAX_PERSISTENT_CACHE_MIN_COMPILE_TIME_SECS", "1.0")
