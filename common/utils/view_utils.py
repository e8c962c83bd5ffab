from rest_framework import mixins, status
from rest_framework.response import Response
from rest_framework.viewsets import ModelViewSet


class ReadWriteSerializerMixin:
    """
    Lets a view validate input with ``write_serializer_class`` and render output with
    ``read_serializer_class``, falling back to ``serializer_class`` for either.
    """

    read_serializer_class = None
    write_serializer_class = None

    def get_read_serializer_class(self):
        return self.read_serializer_class or self.get_serializer_class()

    def get_write_serializer_class(self):
        return self.write_serializer_class or self.get_serializer_class()

    def get_read_serializer(self, *args, **kwargs):
        kwargs["context"] = self.get_serializer_context()
        return self.get_read_serializer_class()(*args, **kwargs)

    def get_write_serializer(self, *args, **kwargs):
        kwargs["context"] = self.get_serializer_context()
        return self.get_write_serializer_class()(*args, **kwargs)


class CreateModelMixin(ReadWriteSerializerMixin, mixins.CreateModelMixin):
    def create(self, request, *args, **kwargs):
        serializer = self.get_write_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.perform_create(serializer)

        # re-fetches the instance so we get the selects of get_queryset
        instance = self.get_queryset().get(pk=serializer.instance.pk)
        return_serializer = self.get_read_serializer(instance)
        headers = self.get_success_headers(return_serializer.data)
        return Response(return_serializer.data, status=status.HTTP_201_CREATED, headers=headers)


class UpdateModelMixin(ReadWriteSerializerMixin, mixins.UpdateModelMixin):
    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        instance = self.get_object()
        serializer = self.get_write_serializer(instance, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        self.perform_update(serializer)

        instance = self.get_queryset().get(pk=serializer.instance.pk)
        return Response(self.get_read_serializer(instance).data)


class FilterOnlyOnListMixin:
    def filter_queryset(self, queryset):
        if self.action != "list":
            return queryset
        return super().filter_queryset(queryset)


class CalendarSyncModelViewSet(
    CreateModelMixin,
    UpdateModelMixin,
    FilterOnlyOnListMixin,
    ModelViewSet,
):
    """
    A viewset that provides default `create()`, `retrieve()`, `update()`,
    `partial_update()`, `destroy()` and `list()` actions.
    It refetches the instance after write operations to ensure the latest data is returned.
    """

    pass
