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

import os
import time
from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from stencilbench.benchmark_result import BenchmarkResult
from stencilbench.raster import RasterImage
from stencilbench.stencil import StencilKernel, FilterType

DEFAULT_BLOCK_SIZE_2D = 8
DEFAULT_NUM_THREADS = os.cpu_count() or 1
# Rows are split so that each thread gets this many chunks on average, to balance the load;
DEFAULT_CHUNKS_PER_THREAD = 4

# Maximum per-channel difference w.r.t. the sequential result accepted by the CPU validation;
VALIDATION_TOLERANCE = {
    FilterType.BLUR: 0,
    FilterType.EDGE_DETECTION: 1,
}


def time_phase(phase_name: str) -> Callable:
    """
    Decorator that simplifies timing a function call and storing the result in the benchmark log;
    :param phase_name: name of the benchmark phase
    :return: the output of the wrapped function
    """
    def inner_func(func) -> Callable:
        def func_call(self, *args, **kwargs) -> object:
            start = time.perf_counter()
            result = func(self, *args, **kwargs)
            end = time.perf_counter()
            self.benchmark.add_phase({"name": phase_name, "time_sec": end - start})
            return result
        return func_call
    return inner_func


class Benchmark(ABC):
    """
    Base class for all execution strategies, it provides the general control flow of the benchmark execution;
    :param name: name of the strategy
    :param benchmark: instance of BenchmarkResult, used to store results
    """

    def __init__(self, name: str, benchmark: BenchmarkResult):
        self.name = name
        self.benchmark = benchmark
        self.time_phases = False
        self.tot_iter = 0
        self.current_iter = 0
        self.image = None
        self.kernel = None
        # Input and output buffers of the current iteration. The input is never written;
        self.input = None
        self.output = None

    @property
    def config_key(self) -> str:
        """
        Settings of this strategy that identify its results, e.g. the number of threads;
        """
        return "1"

    @abstractmethod
    def alloc(self, image: RasterImage, kernel: StencilKernel) -> None:
        """
        Prepare the strategy for a new input, e.g. compile the stencil for the target device;
        :param image: the input image, never modified
        :param kernel: the filter to apply
        """
        pass

    @time_phase("initialization")
    def init(self) -> None:
        """
        Take a fresh copy of the untouched input image, so that no previous result leaks into this run;
        """
        self.input = self.image.copy()

    @time_phase("reset_result")
    def reset_result(self) -> None:
        """
        Allocate a zeroed output buffer: border pixels are never computed, and stay black
        """
        self.output = self.input.blank_like()

    @abstractmethod
    def execute(self) -> RasterImage:
        """
        Execute the main computation of this benchmark;
        :return: the filtered image
        """
        pass

    def cpu_validation(self, result: RasterImage, reference: RasterImage) -> int:
        """
        Compare the result of this strategy with a reference result, typically the one of the sequential strategy;
        :param result: the output of this strategy
        :param reference: the expected output
        :return: the maximum per-channel absolute difference
        """
        start = time.perf_counter()
        difference = int(np.max(np.abs(result.pixels.astype(np.int16) - reference.pixels.astype(np.int16))))
        cpu_time = time.perf_counter() - start

        tolerance = VALIDATION_TOLERANCE[self.kernel.filter_type]
        self.benchmark.add_to_benchmark("cpu_time_sec", cpu_time)
        self.benchmark.add_to_benchmark("cpu_res_difference", difference)
        if difference > tolerance:
            BenchmarkResult.log_message(f"WARNING: {self.name} result differs from the reference by {difference},"
                                        f" tolerance is {tolerance}")
        elif self.benchmark.debug:
            BenchmarkResult.log_message(f"\tcpu validation: max difference={difference}, time: {cpu_time:.4f} sec")
        return difference

    def execute_phase(self, phase_name, function, *args) -> object:
        """
        Executes a single step of the benchmark, possibily measuring the time it takes
        :param phase_name: name of this benchmark step
        :param function: a function to execute
        :param args: arguments of the function
        :return: the result of the function
        """
        if self.time_phases:
            start = time.perf_counter()
            res = function(*args)
            end = time.perf_counter()
            self.benchmark.add_phase({"name": phase_name, "time_sec": end - start})
            return res
        else:
            return function(*args)

    def run(self, num_iter: int, image: RasterImage, kernel: StencilKernel, time_phases: bool = False,
            reference: RasterImage = None) -> RasterImage:
        """
        Run one iteration of the strategy;
        :param num_iter: index of the current iteration
        :param image: input image, it is not modified
        :param kernel: the filter to apply
        :param time_phases: if True, measure the execution time of each phase
        :param reference: if present and CPU validation is enabled, compare the result with this image
        :return: the filtered image
        """
        self.benchmark.start_new_benchmark(name=self.name,
                                           filter_name=kernel.name,
                                           size=(image.width, image.height),
                                           config=self.config_key,
                                           iteration=num_iter,
                                           time_phases=time_phases)
        self.current_iter = num_iter
        self.time_phases = time_phases

        # Start a timer to monitor the total execution time;
        start = time.perf_counter()

        # Prepare the strategy if the input changed;
        if num_iter == 0 or image is not self.image or kernel != self.kernel:
            self.image = image
            self.kernel = kernel
            self.alloc(image, kernel)
        self.init()
        self.reset_result()

        # Execute the benchmark;
        result = self.execute()

        # Stop the timer;
        end = time.perf_counter()
        self.benchmark.add_total_time(end - start)

        # Perform validation on CPU;
        if self.benchmark.cpu_validation and reference is not None:
            self.cpu_validation(result, reference)

        # Write to file the current result;
        self.benchmark.save_to_file()
        # Book-keeping;
        self.tot_iter += 1
        return result
