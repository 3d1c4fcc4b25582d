# Copyright (c) 2020, 2021, NECSTLab, Politecnico di Milano. All rights reserved.

# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions
# are met:
#  * Redistributions of source code must retain the above copyright
#    notice, this list of conditions and the following disclaimer.
#  * Redistributions in binary form must reproduce the above copyright
#    notice, this list of conditions and the following disclaimer in the
#    documentation and/or other materials provided with the distribution.
#  * Neither the name of NECSTLab nor the names of its
#    contributors may be used to endorse or promote products derived
#    from this software without specific prior written permission.
#  * Neither the name of Politecnico di Milano nor the names of its
#    contributors may be used to endorse or promote products derived
#    from this software without specific prior written permission.

# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS ``AS IS'' AND ANY
# EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR
# PURPOSE ARE DISCLAIMED.  IN NO EVENT SHALL THE COPYRIGHT OWNER OR
# CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL,
# EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO,
# PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR
# PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY
# OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT
# (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
# OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

import time

from stencilbench.benchmark import Benchmark, time_phase
from stencilbench.benchmark_result import BenchmarkResult
from stencilbench.raster import RasterImage
from stencilbench.stencil import StencilKernel, stencil_rows

##############################
##############################


class SequentialBenchmark(Benchmark):
    """
    Apply the stencil to every interior pixel, row by row, in a single thread of control.
    It is the correctness baseline of the other strategies, and the reference used to compute speedups;
    """

    def __init__(self, benchmark: BenchmarkResult):
        super().__init__("sequential", benchmark)

    @time_phase("allocation")
    def alloc(self, image: RasterImage, kernel: StencilKernel) -> None:
        # Trigger the JIT compilation on a dummy image, so that it is not measured;
        dummy = RasterImage(3, 3)
        stencil_rows(dummy.pixels, dummy.blank_like().pixels, 3, 3, 0, 3, kernel.filter_id, kernel.gx, kernel.gy)

    def execute(self) -> RasterImage:
        start_comp = time.perf_counter()
        self.execute_phase("stencil", stencil_rows,
                           self.input.pixels, self.output.pixels, self.input.width, self.input.height,
                           0, self.input.height, self.kernel.filter_id, self.kernel.gx, self.kernel.gy)
        end = time.perf_counter()
        self.benchmark.add_computation_time(end - start_comp)
        self.benchmark.add_workers(self.name, 1)
        if self.benchmark.debug:
            BenchmarkResult.log_message(f"\tsequential result: [" + ", ".join(str(x) for x in self.output.pixels[:10]) + "...]")
        return self.output
