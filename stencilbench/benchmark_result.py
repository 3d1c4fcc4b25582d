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

import math
import os
from datetime import datetime
import json
import numpy as np


class TimingResult:
    """
    Elapsed time of one execution strategy, as reported by the benchmark harness;
    :param strategy_name: name of the strategy, e.g. "threads"
    :param elapsed_seconds: wall-clock time of the computation, non-negative
    :param worker_count: number of threads or GPU tasks that performed the computation
    """

    def __init__(self, strategy_name: str, elapsed_seconds: float, worker_count: int):
        if elapsed_seconds < 0:
            raise ValueError(f"elapsed time must be non-negative, got {elapsed_seconds}")
        if worker_count < 1:
            raise ValueError(f"worker count must be positive, got {worker_count}")
        self.strategy_name = strategy_name
        self.elapsed_seconds = float(elapsed_seconds)
        self.worker_count = int(worker_count)

    def __repr__(self) -> str:
        return f"TimingResult({self.strategy_name}, {self.elapsed_seconds:.6f} sec, {self.worker_count} workers)"


def speedup(baseline: TimingResult, other: TimingResult) -> float:
    """
    Speedup of a strategy w.r.t. the baseline, i.e. baseline time / strategy time. Values below 1 are slowdowns;
    """
    if other.elapsed_seconds == 0:
        return math.inf if baseline.elapsed_seconds > 0 else math.nan
    return baseline.elapsed_seconds / other.elapsed_seconds


class BenchmarkResult:

    DEFAULT_NUM_ITER = 1
    DEFAULT_DEBUG = False
    DEFAULT_CPU_VALIDATION = False
    DEFAULT_TIME_PHASES = False
    # Iterations skipped when averaging times, if enough iterations are available;
    DEFAULT_SKIP_ITER = 1

    def __init__(self,
                 num_iterations: int = DEFAULT_NUM_ITER,
                 cpu_validation: bool = DEFAULT_CPU_VALIDATION,
                 debug: bool = DEFAULT_DEBUG,
                 output_path: str = "",
                 ):
        self.debug = debug
        self.num_iterations = num_iterations
        self.cpu_validation = cpu_validation
        self._results = {"num_iterations": num_iterations,
                         "cpu_validation": cpu_validation,
                         "benchmarks": {}}
        # Used to store the results of the benchmark currently being executed;
        self._dict_current = {}
        # Iterations of each strategy, in execution order;
        self._iterations = {}
        self._workers = {}

        # Results are stored as JSON only if an output path is provided;
        self._output_path = output_path
        if output_path:
            output_folder = os.path.dirname(output_path)
            if output_folder and not os.path.exists(output_folder):
                if self.debug:
                    BenchmarkResult.log_message(f"creating result folder: {output_folder}")
                os.makedirs(output_folder)
            if self.debug:
                BenchmarkResult.log_message(f"storing results in {self._output_path}")

    def start_new_benchmark(self, name: str, filter_name: str, size: tuple, config: str,
                            iteration: int, time_phases: bool) -> None:
        """
        Benchmark results are stored in a nested dictionary with the following structure.
        self.results["benchmarks"]->{name}->{filter_name}->{config}->[{actual result}]

        :param name: name of the execution strategy
        :param filter_name: name of the stencil filter
        :param size: (width, height) of the input image
        :param config: settings of the strategy, e.g. number of CPU threads or GPU block size
        :param iteration: current iteration
        :param time_phases: if True, measure the execution time of each phase of the benchmark.
         Note that this introduces overheads, and might influence the total execution time
        """
        dict_filter = self._results["benchmarks"].setdefault(name, {})
        dict_config = dict_filter.setdefault(filter_name, {})
        self._dict_current = {"phases": [], "iteration": iteration, "time_phases": time_phases,
                              "width": size[0], "height": size[1]}
        dict_config.setdefault(config, []).append(self._dict_current)
        self._iterations.setdefault(name, []).append(self._dict_current)

        if self.debug:
            BenchmarkResult.log_message(
                f"starting benchmark={name}, filter={filter_name}, iter={iteration + 1}/{self.num_iterations}, "
                f"size={size[0]}x{size[1]}, config={config}, time_phases={time_phases}")

    def add_to_benchmark(self, key: str, message: object) -> None:
        """
        Add an key-value pair in the current benchmark entry, e.g. ("cpu_time_sec", 10);
        :param key: the key used to identify the message
        :param message: the value of the message, possibly a string, a number,
        or any object that can be represented as JSON
        """
        self._dict_current[key] = message

    def add_total_time(self, total_time: float) -> None:
        """
        Add to the current benchmark entry the execution time of a benchmark iteration,
         and compute the amount of overhead w.r.t. the single phases
        :param total_time: execution time of the benchmark iteration
        """
        self._dict_current["total_time_sec"] = total_time

        # Keep only phases related to the computation;
        blacklisted_phases = ["allocation", "initialization", "reset_result"]
        filtered_phases = [x for x in self._dict_current["phases"] if x["name"] not in blacklisted_phases]
        tot_time_phases = sum([x["time_sec"] if "time_sec" in x else 0 for x in filtered_phases])
        self._dict_current["overhead_sec"] = total_time - tot_time_phases
        self._dict_current["computation_sum_phases_sec"] = tot_time_phases
        if self.debug:
            BenchmarkResult.log_message(f"\ttotal execution time: {total_time:.4f} sec," +
                                        f" overhead: {total_time - tot_time_phases:.4f} sec, " +
                                        f" computation: {self._dict_current.get('computation_sec', 0):.4f} sec")

    def add_computation_time(self, computation_time: float) -> None:
        """
        Add to the current benchmark entry the computation time of the benchmark iteration
        :param computation_time: execution time of the filter, in seconds
        """
        self._dict_current["computation_sec"] = computation_time

    def add_workers(self, name: str, num_workers: int) -> None:
        """
        Store the number of workers that actually performed the computation of a strategy;
        """
        self._dict_current["workers_used"] = num_workers
        self._workers[name] = num_workers

    def add_phase(self, phase: dict) -> None:
        """
        Add a dictionary that represents a phase of a benchmark, to provide fine-grained profiling;
        :param phase: a dictionary that contains information about a phase of the algorithm,
        with information such as name, duration, description, etc...
        """
        self._dict_current["phases"] += [phase]
        if self.debug and "name" in phase and "time_sec" in phase:
            BenchmarkResult.log_message(f"\t\t{phase['name']}: {phase['time_sec']:.4f} sec")

    def timing(self, name: str, skip: int = DEFAULT_SKIP_ITER) -> TimingResult:
        """
        Summarize the iterations of a strategy as a single timing, using the mean computation time;
        :param name: name of the strategy
        :param skip: skip the first N iterations, if at least another iteration is left
        """
        iterations = self._iterations.get(name)
        if not iterations:
            raise KeyError(f"no results for benchmark {name}")
        comp_exec_times = [x["computation_sec"] for x in iterations if "computation_sec" in x]
        if len(comp_exec_times) > skip:
            comp_exec_times = comp_exec_times[skip:]
        return TimingResult(name, float(np.mean(comp_exec_times)), self._workers.get(name, 1))

    def print_summary(self, timings: list) -> None:
        """
        Print the execution time, speedup and number of workers of each strategy.
        The first timing is the baseline used to compute speedups;
        """
        if not timings:
            return
        baseline = timings[0]
        for t in timings:
            BenchmarkResult.log_message(f"Execution time ({t.strategy_name}): {t.elapsed_seconds:.6f} seconds")
        for t in timings[1:]:
            BenchmarkResult.log_message(f"Speedup ({t.strategy_name} vs {baseline.strategy_name}): {speedup(baseline, t):.2f}x")
        for t in timings:
            BenchmarkResult.log_message(f"Number of workers used ({t.strategy_name}): {t.worker_count}")

    def save_to_file(self) -> None:
        if not self._output_path:
            return
        with open(self._output_path, "w+") as f:
            json_result = json.dumps(self._results, ensure_ascii=False, indent=4)
            f.write(json_result)

    @property
    def results(self) -> dict:
        return self._results

    @staticmethod
    def log_message(message: str) -> None:
        date = datetime.now()
        date_str = date.strftime("%Y-%m-%d-%H-%M-%S-%f")
        print(f"[{date_str} stencilbench] {message}")
