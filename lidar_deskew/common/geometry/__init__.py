"""JAX geometry kernels."""
