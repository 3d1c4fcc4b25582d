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

import numpy as np
import pytest

from helpers import uniform_image, border_mask
from stencilbench.bench import STRATEGIES, default_strategies
from stencilbench.bench.gpu_parallel import GpuParallelBenchmark
from stencilbench.bench.sequential import SequentialBenchmark
from stencilbench.bench.thread_parallel import ThreadParallelBenchmark
from stencilbench.benchmark_result import BenchmarkResult
from stencilbench.raster import RasterImage
from stencilbench.stencil import FilterType, StencilKernel, apply_stencil

KERNELS = [StencilKernel(FilterType.BLUR), StencilKernel(FilterType.EDGE_DETECTION)]


def create_strategies(benchmark_res: BenchmarkResult) -> list:
    return [SequentialBenchmark(benchmark_res),
            ThreadParallelBenchmark(benchmark_res, num_threads=3),
            ThreadParallelBenchmark(benchmark_res, num_threads=2, chunk_rows=1),
            GpuParallelBenchmark(benchmark_res, block_size_2d=4)]


@pytest.mark.parametrize("kernel", KERNELS, ids=lambda k: k.name)
def test_strategies_match_the_reference(random_image: RasterImage, benchmark_res: BenchmarkResult,
                                        kernel: StencilKernel) -> None:
    expected = apply_stencil(random_image, kernel)
    for strategy in create_strategies(benchmark_res):
        result = strategy.run(num_iter=0, image=random_image, kernel=kernel, reference=expected)
        difference = np.abs(result.pixels.astype(np.int16) - expected.pixels.astype(np.int16))
        tolerance = 1 if kernel.filter_type == FilterType.EDGE_DETECTION else 0
        assert difference.max() <= tolerance, strategy.name
        assert benchmark_res.results["benchmarks"][strategy.name][kernel.name]


@pytest.mark.parametrize("kernel", KERNELS, ids=lambda k: k.name)
def test_strategies_leave_borders_black(benchmark_res: BenchmarkResult, kernel: StencilKernel) -> None:
    image = uniform_image(10, 6, (200, 100, 50))
    for strategy in create_strategies(benchmark_res):
        result = strategy.run(num_iter=0, image=image, kernel=kernel)
        assert not np.any(result.as_array()[border_mask(result)]), strategy.name


def test_strategies_do_not_modify_the_input(random_image: RasterImage, benchmark_res: BenchmarkResult) -> None:
    original = random_image.copy()
    for strategy in create_strategies(benchmark_res):
        result = strategy.run(num_iter=0, image=random_image, kernel=KERNELS[1])
        assert result.pixels is not random_image.pixels
    assert random_image == original


def test_repeated_runs_start_from_the_original(random_image: RasterImage, benchmark_res: BenchmarkResult) -> None:
    strategy = ThreadParallelBenchmark(benchmark_res, num_threads=2)
    first = strategy.run(num_iter=0, image=random_image, kernel=KERNELS[0]).copy()
    second = strategy.run(num_iter=1, image=random_image, kernel=KERNELS[0])
    assert first == second
    assert len(benchmark_res.results["benchmarks"]["threads"]["blur"]["2"]) == 2


def test_thread_chunks_cover_every_row(benchmark_res: BenchmarkResult) -> None:
    rng = np.random.default_rng(7)
    image = RasterImage(5, 23, rng.integers(0, 256, size=5 * 23 * 3, dtype=np.uint8))
    expected = apply_stencil(image, KERNELS[0])
    for num_threads, chunk_rows in [(1, None), (4, None), (4, 3), (8, 7), (32, None)]:
        strategy = ThreadParallelBenchmark(benchmark_res, num_threads=num_threads, chunk_rows=chunk_rows)
        assert strategy.run(num_iter=0, image=image, kernel=KERNELS[0]) == expected


def test_thread_worker_count(benchmark_res: BenchmarkResult) -> None:
    image = RasterImage(4, 4)
    # Only 2 interior rows, so at most 2 threads can get a chunk;
    strategy = ThreadParallelBenchmark(benchmark_res, num_threads=8, chunk_rows=1)
    strategy.run(num_iter=0, image=image, kernel=KERNELS[0])
    assert strategy.num_chunks == 2
    assert 1 <= benchmark_res.timing("threads").worker_count <= 2

    strategy = ThreadParallelBenchmark(benchmark_res, num_threads=1)
    strategy.run(num_iter=0, image=image, kernel=KERNELS[0])
    assert benchmark_res.timing("threads").worker_count == 1


def test_gpu_worker_count(benchmark_res: BenchmarkResult) -> None:
    strategy = GpuParallelBenchmark(benchmark_res, block_size_2d=4)
    strategy.run(num_iter=0, image=RasterImage(9, 5), kernel=KERNELS[1])
    # 3x2 blocks of 4x4 threads;
    assert strategy.num_blocks == (3, 2)
    assert benchmark_res.timing("gpu").worker_count == 96


def test_sequential_worker_count(random_image: RasterImage, benchmark_res: BenchmarkResult) -> None:
    SequentialBenchmark(benchmark_res).run(num_iter=0, image=random_image, kernel=KERNELS[0])
    timing = benchmark_res.timing("sequential")
    assert timing.worker_count == 1
    assert timing.elapsed_seconds >= 0


def test_cpu_validation_reports_differences(random_image: RasterImage, benchmark_res: BenchmarkResult,
                                            capsys: pytest.CaptureFixture) -> None:
    wrong = random_image.blank_like()
    wrong.pixels[:] = 9
    SequentialBenchmark(benchmark_res).run(num_iter=0, image=random_image, kernel=KERNELS[0], reference=wrong)
    assert "WARNING" in capsys.readouterr().out


def test_invalid_configuration(benchmark_res: BenchmarkResult) -> None:
    with pytest.raises(ValueError):
        ThreadParallelBenchmark(benchmark_res, num_threads=0)
    with pytest.raises(ValueError):
        ThreadParallelBenchmark(benchmark_res, chunk_rows=0)
    with pytest.raises(ValueError):
        GpuParallelBenchmark(benchmark_res, block_size_2d=0)


def test_strategy_registry() -> None:
    assert list(STRATEGIES.keys()) == ["sequential", "threads", "gpu"]
    assert default_strategies()[:2] == ["sequential", "threads"]
