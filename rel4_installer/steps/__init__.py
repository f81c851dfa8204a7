from .step_10_build_rel4_kernel import BuildRel4KernelStep
from .step_20_install_kernel_image import InstallKernelImageStep
from .step_30_build_sel4_kernel import BuildSeL4KernelStep
from .step_40_install_kernel_loader import InstallKernelLoaderStep

__all__ = [
    "BuildRel4KernelStep",
    "InstallKernelImageStep",
    "BuildSeL4KernelStep",
    "InstallKernelLoaderStep",
]
