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

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from stencilbench.benchmark import Benchmark, time_phase, DEFAULT_NUM_THREADS, DEFAULT_CHUNKS_PER_THREAD
from stencilbench.benchmark_result import BenchmarkResult
from stencilbench.raster import RasterImage
from stencilbench.stencil import StencilKernel, stencil_rows

##############################
##############################


class ThreadParallelBenchmark(Benchmark):
    """
    Apply the stencil with a pool of CPU threads. Interior rows are split into chunks of consecutive rows,
    and each thread repeatedly claims the next unprocessed chunk from a shared counter, until none is left.
    Chunks are disjoint, so threads write disjoint parts of the output buffer and need no lock on the pixels.
    The compiled stencil releases the GIL, so threads run concurrently;
    :param num_threads: size of the thread pool
    :param chunk_rows: rows in each chunk. If missing, create about DEFAULT_CHUNKS_PER_THREAD chunks per thread
    """

    def __init__(self, benchmark: BenchmarkResult, num_threads: int = DEFAULT_NUM_THREADS, chunk_rows: int = None):
        super().__init__("threads", benchmark)
        if num_threads < 1:
            raise ValueError(f"the number of threads must be positive, got {num_threads}")
        if chunk_rows is not None and chunk_rows < 1:
            raise ValueError(f"the number of rows in a chunk must be positive, got {chunk_rows}")
        self.num_threads = num_threads
        self.chunk_rows = chunk_rows
        self.num_chunks = 0
        self._rows_per_chunk = 1
        # Work-distribution counter, the only state shared by the threads;
        self._next_chunk = 0
        self._lock = threading.Lock()

    @property
    def config_key(self) -> str:
        return str(self.num_threads)

    @time_phase("allocation")
    def alloc(self, image: RasterImage, kernel: StencilKernel) -> None:
        interior_rows = max(image.height - 2, 0)
        if self.chunk_rows:
            self._rows_per_chunk = self.chunk_rows
        else:
            self._rows_per_chunk = max(1, interior_rows // (self.num_threads * DEFAULT_CHUNKS_PER_THREAD))
        self.num_chunks = (interior_rows + self._rows_per_chunk - 1) // self._rows_per_chunk

        # Trigger the JIT compilation on a dummy image, so that it is not measured;
        dummy = RasterImage(3, 3)
        stencil_rows(dummy.pixels, dummy.blank_like().pixels, 3, 3, 0, 3, kernel.filter_id, kernel.gx, kernel.gy)

    def _claim_chunk(self) -> int:
        with self._lock:
            chunk = self._next_chunk
            self._next_chunk += 1
        return chunk

    def _worker(self, src, dst, width: int, height: int, filter_id: int, gx, gy) -> int:
        processed = 0
        while True:
            chunk = self._claim_chunk()
            if chunk >= self.num_chunks:
                return processed
            # Chunks cover the interior rows, which start at row 1;
            row_start = 1 + chunk * self._rows_per_chunk
            stencil_rows(src, dst, width, height, row_start, row_start + self._rows_per_chunk, filter_id, gx, gy)
            processed += 1

    def _compute(self) -> int:
        self._next_chunk = 0
        num_workers = max(1, min(self.num_threads, self.num_chunks))
        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            futures = [executor.submit(self._worker, self.input.pixels, self.output.pixels,
                                       self.input.width, self.input.height,
                                       self.kernel.filter_id, self.kernel.gx, self.kernel.gy)
                       for _ in range(num_workers)]
            # Leaving the executor joins all the threads;
            processed = [f.result() for f in futures]
        # Workers that found no chunk left did not take part in the computation;
        return max(1, sum(1 for p in processed if p > 0))

    def execute(self) -> RasterImage:
        start_comp = time.perf_counter()
        workers_used = self.execute_phase("stencil", self._compute)
        end = time.perf_counter()
        self.benchmark.add_computation_time(end - start_comp)
        self.benchmark.add_workers(self.name, workers_used)
        if self.benchmark.debug:
            BenchmarkResult.log_message(f"\tthreads used: {workers_used}/{self.num_threads}, chunks: {self.num_chunks}"
                                        f" of {self._rows_per_chunk} rows")
        return self.output
