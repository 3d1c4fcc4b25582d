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

import argparse
import sys

from stencilbench.bench import STRATEGIES, default_strategies, GpuUnavailableError
from stencilbench.benchmark import DEFAULT_BLOCK_SIZE_2D, DEFAULT_NUM_THREADS
from stencilbench.benchmark_result import BenchmarkResult
from stencilbench.raster import read_ppm, write_ppm, RasterFormatError
from stencilbench.stencil import StencilKernel, FilterType

##############################
##############################


def create_benchmark(name: str, benchmark_res: BenchmarkResult, args: argparse.Namespace):
    if name == "threads":
        return STRATEGIES[name](benchmark_res, num_threads=args.num_threads, chunk_rows=args.chunk_rows)
    elif name == "gpu":
        return STRATEGIES[name](benchmark_res, block_size_2d=args.block_size_2d)
    else:
        return STRATEGIES[name](benchmark_res)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="measure the execution time of 3x3 stencil filters on a PPM image")

    parser.add_argument("input_path", metavar="input.ppm",
                        help="Path to the input image, in binary PPM (P6) format")
    parser.add_argument("output_path", metavar="output.ppm",
                        help="Path where the filtered image is written")
    parser.add_argument("filter", type=int, choices=[int(f) for f in FilterType],
                        help="Filter to apply: 1 - Blur, 2 - Edge Detection")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="If present, print debug messages")
    parser.add_argument("-i", "--num_iter", metavar="N", type=int, default=BenchmarkResult.DEFAULT_NUM_ITER,
                        help="Number of times each strategy is executed")
    parser.add_argument("-o", "--results_path", metavar="path/to/output.json",
                        help="Path to the file where results will be stored, as JSON")
    parser.add_argument("-s", "--strategy", nargs="*", choices=list(STRATEGIES.keys()),
                        help="If present, run only the specified execution strategies")
    parser.add_argument("-t", "--num_threads", metavar="N", type=int, default=DEFAULT_NUM_THREADS,
                        help="Number of CPU threads used by the threads strategy")
    parser.add_argument("--chunk_rows", metavar="N", type=int,
                        help="Number of image rows claimed by a CPU thread at a time")
    parser.add_argument("--block_size_2d", metavar="N", type=int, default=DEFAULT_BLOCK_SIZE_2D,
                        help="Number of threads per side of each GPU thread block")
    parser.add_argument("-c", "--cpu_validation", action="store_true", dest="cpu_validation",
                        help="Validate the result of each strategy against the sequential one")
    parser.add_argument("--no_cpu_validation", action="store_false", dest="cpu_validation",
                        help="Do not validate the result of each strategy")
    parser.add_argument("-p", "--time_phases", action="store_true",
                        help="Measure the execution time of each phase of the benchmark;"
                             " note that this introduces overheads, and might influence the total execution time")
    parser.set_defaults(cpu_validation=BenchmarkResult.DEFAULT_CPU_VALIDATION)
    return parser


def main(argv: list = None) -> int:
    parser = create_parser()

    # Parse the input arguments;
    args = parser.parse_args(argv)
    if args.num_iter < 1 or args.num_threads < 1 or args.block_size_2d < 1 or (args.chunk_rows is not None and args.chunk_rows < 1):
        parser.error("iterations, threads, chunk rows and block size must be positive")

    kernel = StencilKernel.from_selector(args.filter)
    cpu_validation = args.cpu_validation
    time_phases = args.time_phases

    # Create a new benchmark result instance;
    benchmark_res = BenchmarkResult(debug=args.debug, num_iterations=args.num_iter,
                                    output_path=args.results_path, cpu_validation=cpu_validation)
    if benchmark_res.debug:
        BenchmarkResult.log_message(f"using filter: {kernel.name}, CPU validation: {cpu_validation}")

    requested = args.strategy if args.strategy else default_strategies()
    # The sequential strategy is the baseline for speedups and validation, it always runs first;
    requested = ["sequential"] + list(requested)
    strategies = [s for s in STRATEGIES.keys() if s in requested]
    if benchmark_res.debug:
        BenchmarkResult.log_message(f"using strategies: {strategies}")

    timings = []
    reference = None
    result = None
    try:
        # Execute each strategy, on a freshly loaded copy of the input;
        for name in strategies:
            benchmark = create_benchmark(name, benchmark_res, args)
            image = read_ppm(args.input_path)
            for i in range(args.num_iter):
                result = benchmark.run(num_iter=i, image=image, kernel=kernel, time_phases=time_phases,
                                       reference=reference)
            if name == "sequential":
                reference = result
            timings.append(benchmark_res.timing(name))

        benchmark_res.print_summary(timings)
        write_ppm(args.output_path, result)
    except (OSError, RasterFormatError, GpuUnavailableError) as e:
        BenchmarkResult.log_message(f"ERROR: {e}")
        return 1
    if benchmark_res.debug:
        BenchmarkResult.log_message(f"result written to {args.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
